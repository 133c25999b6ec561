"""Supervisor: one-time startup sequencing.

Composes the other daemon components. ``start()`` checks the constraints
and then does one of two things:

- in spawn mode (this process is a worker re-invoked by a supervisor) or
  debug mode, run the unit of work once, pause for the quiet period and
  return the exit status that encodes the outcome;
- in supervisor mode, detach, optionally write the PID file, wait out the
  ramp-up time and hand control to the ``WorkerPoolScheduler`` until a
  termination signal arrives.
"""

from __future__ import annotations

import signal
import time
from collections.abc import Iterable, Sequence
from pathlib import Path
from types import FrameType
from typing import Any

from tiller.core.logging import WorkerContext, get_logger, set_context
from tiller.daemon.config import DaemonConfig
from tiller.daemon.constraints import Constraint, ConstraintSet, SupervisorContext
from tiller.daemon.detach import Daemonizer
from tiller.daemon.pgroup import ProcessGroupManager
from tiller.daemon.pidfile import remove_pid, write_pid
from tiller.daemon.scheduler import WorkerPoolScheduler
from tiller.daemon.types import RunMode, WorkerOutcome, WorkUnit, outcome_from_result
from tiller.daemon.worker import SubprocessLauncher, WorkerLauncher

_logger = get_logger("daemon.supervisor")

_STOP_SIGNALS = (signal.SIGTERM, signal.SIGINT)

# Ramp-up is slept in slices; a stop request ends it at the next slice.
_RAMP_UP_SLICE = 0.5


class Supervisor:
    """Top-level orchestration for one daemon invocation.

    Args:
        config: Daemon settings, treated as read-only.
        work_unit: The embedding application's unit of work.
        constraints: Startup preconditions, evaluated in order.
        spawn_command: Command that re-invokes this entry point in spawn
            mode. Required in supervisor mode unless ``launcher`` is given.
        foreground: Skip detachment in supervisor mode.
        daemonizer: Override the detachment step (defaults to one built
            from ``config``).
        launcher: Override the process layer used by the scheduler.
    """

    def __init__(
        self,
        config: DaemonConfig,
        work_unit: WorkUnit,
        *,
        constraints: Iterable[Constraint] = (),
        spawn_command: Sequence[str] = (),
        foreground: bool = False,
        daemonizer: Daemonizer | None = None,
        launcher: WorkerLauncher | None = None,
    ) -> None:
        self.config = config
        self.work_unit = work_unit
        self.constraints = ConstraintSet(constraints)
        self.spawn_command = tuple(spawn_command)
        self.foreground = foreground
        self.working_directory = config.working_directory or Path.cwd()
        self._daemonizer = daemonizer
        self._launcher = launcher
        self._scheduler: WorkerPoolScheduler | None = None
        self._previous_handlers: dict[int, Any] = {}

    @property
    def scheduler(self) -> WorkerPoolScheduler | None:
        """The scheduler, once supervisor mode has reached it."""
        return self._scheduler

    def start(self, mode: RunMode) -> int:
        """Run this invocation to completion and return its exit status.

        Raises:
            ConstraintViolationError: A startup constraint failed; nothing
                was detached or spawned.
            DetachmentError: The OS refused to detach the session.
        """
        context = SupervisorContext(
            config=self.config, mode=mode, spawn_command=self.spawn_command,
        )
        self.constraints.check_all(context)

        if mode is RunMode.SUPERVISOR:
            return self._supervise()
        return self._run_unit(mode)

    # ─── Worker side ───────────────────────────────────────────────

    def _run_unit(self, mode: RunMode) -> int:
        set_context(WorkerContext(role="worker" if mode is RunMode.SPAWN else "debug"))
        _logger.debug("worker.unit_started")

        try:
            outcome = outcome_from_result(self.work_unit.run())
        except Exception:
            _logger.exception("worker.unit_crashed")
            outcome = WorkerOutcome.FAILED

        _logger.debug(
            "worker.unit_finished",
            outcome=outcome.value,
            quiet_period=self.config.quiet_period,
        )
        if self.config.quiet_period > 0:
            time.sleep(self.config.quiet_period)
        return outcome.exit_code

    # ─── Supervisor side ───────────────────────────────────────────

    def _supervise(self) -> int:
        if not self.spawn_command and self._launcher is None:
            raise ValueError("Supervisor mode needs a spawn_command or a launcher")

        pgroup = ProcessGroupManager()
        if not self.foreground:
            self._get_daemonizer().detach()
            pgroup.setup()
        set_context(WorkerContext(role="supervisor"))

        if self.config.pid_file is not None:
            write_pid(self.config.pid_file)

        self._scheduler = WorkerPoolScheduler(
            self.config, self._get_launcher(), pgroup=pgroup,
        )
        self._install_signal_handlers()
        try:
            self._ramp_up(self._scheduler)
            self._scheduler.run()
        finally:
            self._restore_signal_handlers()
            if self.config.pid_file is not None:
                remove_pid(self.config.pid_file)
        return 0

    def _ramp_up(self, scheduler: WorkerPoolScheduler) -> None:
        remaining = self.config.ramp_up_time
        if remaining <= 0:
            return
        _logger.info("supervisor.ramp_up", seconds=remaining)
        while remaining > 0 and not scheduler.stop_requested:
            step = min(remaining, _RAMP_UP_SLICE)
            time.sleep(step)
            remaining -= step

    def _get_daemonizer(self) -> Daemonizer:
        if self._daemonizer is None:
            self._daemonizer = Daemonizer(
                working_directory=self.working_directory,
                output_log=self.config.output_log,
                error_log=self.config.error_log,
            )
        return self._daemonizer

    def _get_launcher(self) -> WorkerLauncher:
        if self._launcher is None:
            self._launcher = SubprocessLauncher(
                self.spawn_command,
                output_log=self.config.output_log,
                error_log=self.config.error_log,
                cwd=self.working_directory,
            )
        return self._launcher

    def _install_signal_handlers(self) -> None:
        for sig in _STOP_SIGNALS:
            self._previous_handlers[sig] = signal.signal(sig, self._handle_stop_signal)

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._previous_handlers.items():
            signal.signal(sig, handler)
        self._previous_handlers.clear()

    def _handle_stop_signal(self, signum: int, frame: FrameType | None) -> None:
        scheduler = self._scheduler
        if scheduler is None:
            return
        name = signal.Signals(signum).name
        if scheduler.stop_requested:
            _logger.info("supervisor.signal_ignored_already_stopping", signal=name)
            return
        _logger.info("supervisor.signal_received", signal=name)
        scheduler.request_stop()
        scheduler.terminate_workers(signal.SIGTERM)


__all__ = ["Supervisor"]
