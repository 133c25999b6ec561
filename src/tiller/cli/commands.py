"""Daemon commands: ``tiller run/check/stop/status``.

The core logic lives in ``tiller.daemon.process``; this module provides
thin Typer wrappers that turn startup errors into a diagnostic and a
non-zero exit.
"""

from __future__ import annotations

from pathlib import Path

import typer

from tiller.cli.output import print_error, print_info, print_success
from tiller.daemon.exceptions import (
    ConfigError,
    ConstraintViolationError,
    DaemonError,
)


def run(
    target: str = typer.Argument(..., help="Work unit as 'module:attr'"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="YAML config file"),
    foreground: bool = typer.Option(
        False, "--foreground", "-f", help="Supervise without detaching",
    ),
    debug: bool = typer.Option(
        False, "--debug", help="Run the work unit once in the foreground and exit",
    ),
    log_level: str | None = typer.Option(
        None, "--log-level", "-l", help="Log level (debug, info, warning, error)",
    ),
    spawn: bool = typer.Option(False, "--spawn", hidden=True),
) -> None:
    """Start a daemon that keeps workers running TARGET."""
    from tiller.daemon.process import start_daemon

    try:
        code = start_daemon(
            target,
            config_file=config_file,
            foreground=foreground,
            debug=debug,
            spawn=spawn,
            log_level=log_level.lower() if log_level else None,
        )
    except ConstraintViolationError as exc:
        print_error(f"Startup constraint failed: {exc}", hint="Nothing was started.")
        raise typer.Exit(1) from None
    except DaemonError as exc:
        print_error(str(exc))
        raise typer.Exit(1) from None
    raise typer.Exit(code)


def check(
    target: str = typer.Argument(..., help="Work unit as 'module:attr'"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="YAML config file"),
) -> None:
    """Evaluate startup constraints without starting the daemon."""
    from tiller.daemon.process import check_daemon

    try:
        passed = check_daemon(target, config_file=config_file)
    except ConstraintViolationError as exc:
        print_error(f"Startup constraint failed: {exc}")
        raise typer.Exit(1) from None
    except ConfigError as exc:
        print_error(str(exc))
        raise typer.Exit(1) from None

    for name in passed:
        print_success(name)
    print_info(f"{len(passed)} constraint(s) passed")


def stop(
    config_file: Path | None = typer.Option(None, "--config", "-c", help="YAML config file"),
    pid_file: Path | None = typer.Option(None, "--pid-file", help="PID file path"),
    force: bool = typer.Option(False, "--force", help="Send SIGKILL instead of SIGTERM"),
) -> None:
    """Stop a running daemon."""
    from tiller.daemon.process import stop_daemon

    resolved = _resolve_pid_file(config_file, pid_file)
    try:
        pid = stop_daemon(resolved, force=force)
    except DaemonError as exc:
        print_error(str(exc))
        raise typer.Exit(1) from None
    print_info(f"Sent {'SIGKILL' if force else 'SIGTERM'} to Tiller daemon (PID {pid})")


def status(
    config_file: Path | None = typer.Option(None, "--config", "-c", help="YAML config file"),
    pid_file: Path | None = typer.Option(None, "--pid-file", help="PID file path"),
) -> None:
    """Check whether a daemon is running."""
    from tiller.daemon.process import daemon_status

    pid = daemon_status(_resolve_pid_file(config_file, pid_file))
    if pid is None:
        print_info("Tiller daemon is not running")
        raise typer.Exit(1)
    print_info(f"Tiller daemon is running (PID {pid})")


def _resolve_pid_file(config_file: Path | None, pid_file: Path | None) -> Path:
    if pid_file is not None:
        return pid_file
    if config_file is not None:
        from tiller.daemon.config import load_config

        try:
            configured = load_config(config_file).pid_file
        except ConfigError as exc:
            print_error(str(exc))
            raise typer.Exit(1) from None
        if configured is not None:
            return configured
    print_error("No PID file configured", hint="Pass --pid-file or set pid_file in --config.")
    raise typer.Exit(1)
