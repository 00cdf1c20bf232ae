"""Info command: show queue metadata."""

import asyncio
import json

import typer

from sbwatcher.cli._console import error, error_panel
from sbwatcher.cli._display import print_snapshot
from sbwatcher.client.redis import RedisQueueClient
from sbwatcher.errors import QueueClientError
from sbwatcher.models import QueueSnapshot


async def _lookup(client: RedisQueueClient, queue: str) -> QueueSnapshot | None:
    try:
        return await client.get_queue(queue)
    finally:
        await client.close()


def info(
    queue: str = typer.Option(..., "--queue", "-q", help="Queue to inspect"),
    redis_url: str | None = typer.Option(
        None,
        "--redis-url",
        help="Redis URL (overrides SBWATCHER_REDIS_URL)",
    ),
    json_output: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """Show the backlog and metadata of a queue."""
    client = RedisQueueClient(redis_url)
    try:
        snapshot = asyncio.run(_lookup(client, queue))
    except QueueClientError as e:
        error_panel(str(e), title="Queue lookup failed")
        raise typer.Exit(1)

    if snapshot is None:
        error(f"Queue not found: {queue}")
        raise typer.Exit(1)

    if json_output:
        typer.echo(json.dumps(snapshot.to_dict(), default=str))
        return
    print_snapshot(snapshot)
