"""sbwatcher CLI."""

import typer

from sbwatcher.cli._console import console
from sbwatcher.cli.info import info
from sbwatcher.cli.send import send
from sbwatcher.cli.watch import watch

app = typer.Typer(
    name="sbwatcher",
    help="Adaptive-concurrency consumer for peek-lock queues.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        from sbwatcher import __version__

        console.print(f"[bold]sbwatcher[/bold] [dim]{__version__}[/dim]")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version",
    ),
) -> None:
    """Consume peek-lock queues with adaptive concurrency."""


# Register commands
app.command()(watch)
app.command()(info)
app.command()(send)
