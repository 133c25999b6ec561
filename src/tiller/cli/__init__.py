"""Tiller CLI.

Commands:
    run     Start a daemon for a work unit (or, with --spawn, be one worker)
    check   Evaluate startup constraints only
    stop    Signal a running daemon
    status  Report whether a daemon is running
"""

from __future__ import annotations

import typer

from tiller import __version__
from tiller.cli.commands import check, run, status, stop
from tiller.cli.output import console

app = typer.Typer(
    name="tiller",
    help="Adaptive background worker-pool daemon",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Tiller v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Tiller - keeps a self-sizing pool of background workers running."""


app.command()(run)
app.command()(check)
app.command()(stop)
app.command()(status)


__all__ = ["app"]
