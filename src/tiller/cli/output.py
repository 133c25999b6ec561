"""Rich output helpers for the Tiller CLI.

Diagnostics go to stderr so that a supervisor started in the foreground
keeps stdout free for whatever the work unit prints.
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

console = Console()
err_console = Console(stderr=True)


def print_error(message: str, *, hint: str | None = None) -> None:
    """Print a fatal startup diagnostic."""
    err_console.print(f"[bold red]Error:[/bold red] {escape(message)}")
    if hint:
        err_console.print(f"[dim]{escape(hint)}[/dim]")


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {escape(message)}")


def print_info(message: str) -> None:
    console.print(escape(message))


__all__ = ["console", "err_console", "print_error", "print_info", "print_success"]
