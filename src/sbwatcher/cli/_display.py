"""Shared display utilities for CLI commands."""

from collections.abc import Callable
from typing import Any

from rich.box import ROUNDED
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from sbwatcher.cli._console import console, nl
from sbwatcher.models import QueueSnapshot


def handler_name(handler: Callable[..., Any]) -> str:
    module = getattr(handler, "__module__", None) or "?"
    name = getattr(handler, "__qualname__", None) or repr(handler)
    return f"{module}:{name}"


def print_watcher_panel(
    *,
    queue_name: str,
    handler: Callable[..., Any],
    concurrency: int,
    redis_url: str | None = None,
) -> None:
    """Print the startup panel showing the watched queue and Ctrl+C hint."""
    lines: list[Text] = []

    line = Text(no_wrap=True, overflow="ellipsis")
    line.append(queue_name, style="cyan bold")
    lines.append(line)

    for label, value in (
        ("handler", handler_name(handler)),
        ("concurrency", str(concurrency)),
    ):
        line = Text(no_wrap=True, overflow="ellipsis")
        line.append(f"   {label:<14} ", style="bold")
        line.append(value, style="dim")
        lines.append(line)

    lines.append(Text())

    table = Table.grid(padding=0)
    table.add_column(overflow="ellipsis", no_wrap=True)
    for line in lines:
        table.add_row(line)

    subtitle_parts: list[str] = []
    if redis_url:
        subtitle_parts.append(f"[green]✓[/green] [dim]redis ({redis_url})[/dim]")
    subtitle_parts.append("[dim]Ctrl+C to stop[/dim]")
    subtitle = " [dim]·[/dim] ".join(subtitle_parts)

    panel = Panel(
        table,
        title="[bold]sbwatcher[/bold]",
        title_align="left",
        subtitle=subtitle,
        subtitle_align="right",
        border_style="dim",
        box=ROUNDED,
        padding=(0, 1),
        expand=False,
    )
    console.print(panel)
    nl()


def print_snapshot(snapshot: QueueSnapshot) -> None:
    """Print queue metadata as a two-column table."""
    table = Table(box=ROUNDED, show_header=False, border_style="dim")
    table.add_column(style="bold")
    table.add_column()

    table.add_row("queue", snapshot.name)
    table.add_row("active messages", str(snapshot.active_message_count))
    details = snapshot.raw.get("CountDetails")
    if isinstance(details, dict):
        for key, value in details.items():
            if key == "ActiveMessageCount":
                continue
            table.add_row(key, str(value))
    for key, value in snapshot.raw.items():
        if key in ("QueueName", "CountDetails"):
            continue
        table.add_row(key, str(value))

    console.print(table)
