"""Watch command: consume a queue with a handler until stopped."""

import asyncio
import logging

import typer

from sbwatcher.cli._console import (
    format_debug_event,
    format_watcher_error,
    nl,
    setup_logging,
)
from sbwatcher.cli._display import print_watcher_panel
from sbwatcher.cli._loader import load_handler
from sbwatcher.client.redis import RedisQueueClient
from sbwatcher.engine.watcher import QueueWatcher
from sbwatcher.errors import WatcherError
from sbwatcher.events import DebugEvent

logger = logging.getLogger("sbwatcher.cli")


def _log_error(err: WatcherError) -> None:
    logger.error(format_watcher_error(err))


def _log_debug(event: DebugEvent) -> None:
    logger.debug(format_debug_event(event))


async def _run_watcher(watcher: QueueWatcher, client: RedisQueueClient) -> bool:
    try:
        await watcher.run()
    finally:
        await client.close()
    return watcher.state.started_at is not None


def watch(
    target: str = typer.Argument(
        ..., help="Handler to run, as FILE.py:HANDLER or MODULE:HANDLER"
    ),
    queue: str = typer.Option(..., "--queue", "-q", help="Queue to consume"),
    concurrency: int | None = typer.Option(
        None,
        "--concurrency",
        "-c",
        min=1,
        help="Maximum in-flight messages (overrides SBWATCHER_CONCURRENCY)",
    ),
    redis_url: str | None = typer.Option(
        None,
        "--redis-url",
        help="Redis URL (overrides SBWATCHER_REDIS_URL)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """
    Consume a queue, calling HANDLER(message, done) for each message.

    Examples:
        sbwatcher watch jobs.py:handle -q orders
        sbwatcher watch myapp.consumers:handle -q orders -c 20
    """
    setup_logging(verbose=verbose)

    handler = load_handler(target)
    client = RedisQueueClient(redis_url)
    watcher = QueueWatcher(client, queue, concurrency, handler=handler)
    watcher.on_error(_log_error)
    if verbose:
        watcher.on_debug(_log_debug)

    print_watcher_panel(
        queue_name=queue,
        handler=handler,
        concurrency=watcher.concurrency,
        redis_url=client.redis_url,
    )

    started = True
    try:
        started = asyncio.run(_run_watcher(watcher, client))
    except KeyboardInterrupt:
        pass  # Clean exit on Ctrl+C
    finally:
        nl()

    if not started:
        raise typer.Exit(1)
