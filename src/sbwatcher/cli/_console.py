"""Console output and logging setup for the sbwatcher CLI."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.text import Text

if TYPE_CHECKING:
    from sbwatcher.errors import WatcherError
    from sbwatcher.events import DebugEvent

# Loggers that stay at WARNING even with --verbose
_QUIET_LOGGERS = ("redis", "asyncio")

# Per-message transport chatter, only shown with --verbose
_CHATTY_LOGGERS = ("sbwatcher.client", "sbwatcher.events")

_NO_COLOR = os.environ.get("NO_COLOR", "").lower() in ("1", "true", "yes")

console = Console(highlight=False, force_terminal=not _NO_COLOR, no_color=_NO_COLOR)


def success(msg: str) -> None:
    console.print(f"  [green]✓[/green] {msg}")


def error(msg: str) -> None:
    console.print(f"  [red]✗[/red] {msg}")


def error_panel(msg: str, *, title: str = "Failed") -> None:
    """Print a transport failure in a red panel."""
    body = Text.assemble(("✗ ", "red bold"), (title, "red"), "\n\n", (msg, "dim"))
    console.print(
        Panel(body, border_style="red dim", box=ROUNDED, padding=(0, 1), expand=False)
    )


def nl() -> None:
    console.print()


def format_watcher_error(err: WatcherError) -> str:
    """One log line per error event: status, message and the message id if any."""
    line = f"[red]{err.status.value}[/red] {err.message}"
    if err.queue_message is not None:
        line += f" [dim](message {err.queue_message.message_id})[/dim]"
    return line


def format_debug_event(event: DebugEvent) -> str:
    line = f"[dim]{event.message}[/dim]"
    if event.status:
        line += f" [yellow]{event.status}[/yellow]"
    if event.metadata:
        details = " ".join(f"{k}={v}" for k, v in event.metadata.items())
        line += f" [dim]{details}[/dim]"
    return line


def setup_logging(verbose: bool = False) -> None:
    """Route sbwatcher logs through rich; --verbose shows per-message detail."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[
            RichHandler(
                console=console,
                show_time=verbose,
                show_path=False,
                rich_tracebacks=True,
                markup=True,
                keywords=[],
            )
        ],
        force=True,
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(level if verbose else logging.WARNING)
    logging.getLogger("sbwatcher").setLevel(level)
