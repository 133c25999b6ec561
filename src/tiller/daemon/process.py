"""Daemon entry points.

Two ways in:

``run_daemon()``
    For embedding applications that ship their own script. The script
    calls it with its work unit and config; the run mode is decided once,
    here, from the invocation arguments, and the worker command re-invokes
    the same script with ``--spawn`` appended.

``start_daemon()`` and friends
    The shared core behind ``tiller run/check/stop/status`` (see
    ``tiller.cli``), which names the work unit by import path.
"""

from __future__ import annotations

import os
import signal
import sys
from collections.abc import Iterable, Sequence
from pathlib import Path

from tiller.core.logging import LogFormat, configure_logging, get_logger
from tiller.daemon.config import DaemonConfig, load_config
from tiller.daemon.constraints import (
    Constraint,
    ConstraintSet,
    SupervisorContext,
    load_constraints,
)
from tiller.daemon.exceptions import ConfigError, DaemonAlreadyRunningError, DaemonError
from tiller.daemon.loader import ensure_on_path, instantiate
from tiller.daemon.pidfile import pid_alive, read_pid
from tiller.daemon.supervisor import Supervisor
from tiller.daemon.types import SPAWN_FLAG, RunMode, WorkUnit

_logger = get_logger("daemon.process")


# ─── Embedding API ─────────────────────────────────────────────────────


def build_spawn_command(argv: Sequence[str]) -> list[str]:
    """Command that re-invokes the script in ``argv`` as a worker.

    ``argv[0]`` is resolved to an absolute path because the daemon changes
    directory after detaching. The spawn flag is appended at most once.
    """
    if not argv:
        raise ValueError("argv must contain at least the script path")
    script = str(Path(argv[0]).resolve())
    args = [arg for arg in argv[1:] if arg != SPAWN_FLAG]
    return [sys.executable, script, *args, SPAWN_FLAG]


def mode_from_argv(argv: Sequence[str], *, debug: bool = False) -> RunMode:
    """Decide this invocation's role from its arguments."""
    if SPAWN_FLAG in argv[1:]:
        return RunMode.SPAWN
    if debug:
        return RunMode.DEBUG
    return RunMode.SUPERVISOR


def run_daemon(
    work_unit: WorkUnit,
    config: DaemonConfig | None = None,
    *,
    constraints: Iterable[Constraint] = (),
    argv: Sequence[str] | None = None,
    foreground: bool = False,
    debug: bool = False,
) -> int:
    """Start a daemon for ``work_unit`` from an application's own script.

    Typical use::

        if __name__ == "__main__":
            sys.exit(run_daemon(MyWork(), DaemonConfig(max_parallel=4)))

    Returns:
        The exit status for this process: 42/0/1 for a worker, 0 for a
        supervisor that was stopped by a signal.
    """
    config = config or DaemonConfig()
    argv = list(sys.argv if argv is None else argv)
    mode = mode_from_argv(argv, debug=debug)

    configure_logging(
        level=config.log_level.upper(),  # type: ignore[arg-type]
        format=_log_format(mode, foreground),
        file_path=config.log_file,
    )
    supervisor = Supervisor(
        config,
        work_unit,
        constraints=constraints,
        spawn_command=build_spawn_command(argv),
        foreground=foreground,
    )
    return supervisor.start(mode)


# ─── CLI core ──────────────────────────────────────────────────────────


def start_daemon(
    target: str,
    *,
    config_file: Path | None = None,
    foreground: bool = False,
    debug: bool = False,
    spawn: bool = False,
    log_level: str | None = None,
) -> int:
    """Resolve ``target`` and config, then run the requested mode.

    Called by ``tiller run``. Startup errors propagate to the CLI, which
    turns them into a diagnostic and a non-zero exit.

    Raises:
        ConfigError: Config or import paths don't resolve.
        DaemonAlreadyRunningError: The configured PID file names a live
            supervisor.
        ConstraintViolationError: A startup constraint failed.
        DetachmentError: The session could not be detached.
    """
    config = load_config(config_file, log_level=log_level)
    if spawn:
        mode = RunMode.SPAWN
    elif debug:
        mode = RunMode.DEBUG
    else:
        mode = RunMode.SUPERVISOR

    configure_logging(
        level=config.log_level.upper(),  # type: ignore[arg-type]
        format=_log_format(mode, foreground),
        file_path=config.log_file,
    )

    if mode is RunMode.SUPERVISOR and config.pid_file is not None:
        pid = read_pid(config.pid_file)
        if pid is not None and pid_alive(pid):
            raise DaemonAlreadyRunningError(f"Tiller daemon is already running (PID {pid})")

    ensure_on_path(config.working_directory or Path.cwd())
    work_unit = resolve_work_unit(target)
    supervisor = Supervisor(
        config,
        work_unit,
        constraints=load_constraints(config.constraints),
        spawn_command=cli_spawn_command(target, config_file, config.log_level),
        foreground=foreground,
    )
    _logger.debug("process.starting", mode=mode.value, target=target)
    return supervisor.start(mode)


def check_daemon(target: str, *, config_file: Path | None = None) -> list[str]:
    """Evaluate the startup constraints without starting anything.

    Returns:
        Names of the constraints that passed, in evaluation order.

    Raises:
        ConfigError: Config or import paths don't resolve.
        ConstraintViolationError: A constraint failed.
    """
    config = load_config(config_file)
    ensure_on_path(config.working_directory or Path.cwd())
    resolve_work_unit(target)
    constraints = ConstraintSet(load_constraints(config.constraints))
    constraints.check_all(
        SupervisorContext(
            config=config,
            mode=RunMode.SUPERVISOR,
            spawn_command=tuple(cli_spawn_command(target, config_file, config.log_level)),
        ),
    )
    return [type(c).__qualname__ for c in constraints]


def stop_daemon(pid_file: Path, *, force: bool = False) -> int:
    """Signal the supervisor named in ``pid_file``.

    Returns:
        The PID that was signalled.

    Raises:
        DaemonError: No live supervisor is recorded in ``pid_file``.
    """
    pid = read_pid(pid_file)
    if pid is None or not pid_alive(pid):
        pid_file.unlink(missing_ok=True)
        raise DaemonError("Tiller daemon is not running")

    os.kill(pid, signal.SIGKILL if force else signal.SIGTERM)
    _logger.info("process.stop_sent", pid=pid, force=force)
    return pid


def daemon_status(pid_file: Path) -> int | None:
    """PID of the running supervisor, or None. Cleans up a stale PID file."""
    pid = read_pid(pid_file)
    if pid is None or not pid_alive(pid):
        pid_file.unlink(missing_ok=True)
        return None
    return pid


# ─── Helpers ───────────────────────────────────────────────────────────


def resolve_work_unit(target: str) -> WorkUnit:
    """Instantiate the ``module:attr`` work-unit target."""
    work_unit = instantiate(target)
    if not isinstance(work_unit, WorkUnit):
        raise ConfigError(f"{target!r} does not provide a run() method")
    return work_unit


def cli_spawn_command(
    target: str,
    config_file: Path | None,
    log_level: str,
) -> list[str]:
    """Worker command for a daemon started through ``tiller run``."""
    command = [sys.executable, "-m", "tiller", "run", target]
    if config_file is not None:
        command.extend(["--config", str(config_file.resolve())])
    command.extend(["--log-level", log_level, SPAWN_FLAG])
    return command


def _log_format(mode: RunMode, foreground: bool) -> LogFormat:
    """JSON once output lands in shared log files, console otherwise."""
    if mode is RunMode.DEBUG or (mode is RunMode.SUPERVISOR and foreground):
        return "console"
    return "json"


__all__ = [
    "build_spawn_command",
    "check_daemon",
    "cli_spawn_command",
    "daemon_status",
    "mode_from_argv",
    "resolve_work_unit",
    "run_daemon",
    "start_daemon",
    "stop_daemon",
]
