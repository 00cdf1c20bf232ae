"""Send command: enqueue a message."""

import asyncio
import json
from typing import Any

import typer

from sbwatcher.cli._console import error, error_panel, success
from sbwatcher.client.redis import RedisQueueClient
from sbwatcher.errors import QueueClientError, QueueNotFoundError


def _parse_body(raw: str) -> Any:
    """Decode JSON bodies, keep anything else as plain text."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


async def _send(
    client: RedisQueueClient, queue: str, body: Any, *, create: bool
) -> str:
    try:
        if create:
            await client.create_queue(queue)
        return await client.send_message(queue, body)
    finally:
        await client.close()


def send(
    body: str = typer.Argument(..., help="Message body (JSON or plain text)"),
    queue: str = typer.Option(..., "--queue", "-q", help="Target queue"),
    create: bool = typer.Option(
        False, "--create", help="Create the queue if it does not exist"
    ),
    redis_url: str | None = typer.Option(
        None,
        "--redis-url",
        help="Redis URL (overrides SBWATCHER_REDIS_URL)",
    ),
) -> None:
    """Enqueue one message."""
    client = RedisQueueClient(redis_url)
    try:
        message_id = asyncio.run(_send(client, queue, _parse_body(body), create=create))
    except QueueNotFoundError:
        error(f"Queue not found: {queue} (use --create)")
        raise typer.Exit(1)
    except QueueClientError as e:
        error_panel(str(e), title="Send failed")
        raise typer.Exit(1)

    success(f"Sent {message_id} to {queue}")
