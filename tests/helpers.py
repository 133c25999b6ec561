"""Shared test helpers for Tiller tests."""

from __future__ import annotations

import importlib
import signal
import textwrap
from collections.abc import Callable, Iterable
from pathlib import Path

from tiller.daemon.exceptions import SpawnError
from tiller.daemon.scheduler import WorkerPoolScheduler
from tiller.daemon.types import WorkerOutcome
from tiller.daemon.worker import WorkerProcess


def exit_status(code: int) -> int:
    """Raw ``os.wait()`` status word for a normal exit with ``code``."""
    return (code & 0xFF) << 8


def signal_status(sig: int) -> int:
    """Raw ``os.wait()`` status word for death by signal ``sig``."""
    return int(sig)


def outcome_status(outcome: WorkerOutcome) -> int:
    return exit_status(outcome.exit_code)


def write_module(directory: Path, name: str, source: str) -> Path:
    """Write an importable module into ``directory``."""
    path = directory / f"{name}.py"
    path.write_text(textwrap.dedent(source))
    importlib.invalidate_caches()
    return path


class ScriptedLauncher:
    """In-memory process layer with scripted worker outcomes.

    Workers finish oldest-first, ``batch`` at a time. Each finished worker
    reports the next scripted outcome. Once the script runs out, the
    scheduler is asked to stop and remaining workers report death by
    SIGTERM, as they would after shutdown signalled them.

    Every ``wait_any()`` call records the scheduler's target and in-flight
    count as seen at that moment, which is what the scenario tests assert
    against.
    """

    def __init__(
        self,
        outcomes: Iterable[WorkerOutcome] = (),
        *,
        failing_launches: Iterable[int] = (),
        always_fail: bool = False,
        batch: int = 1,
        scheduler_source: Callable[[], WorkerPoolScheduler | None] | None = None,
    ) -> None:
        self.outcomes = list(outcomes)
        self.failing_launches = set(failing_launches)
        self.always_fail = always_fail
        self.batch = batch
        self.scheduler: WorkerPoolScheduler | None = None
        self._scheduler_source = scheduler_source

        self.running: list[int] = []
        self.launch_attempts = 0
        self.wait_calls = 0
        self.targets_seen: list[int] = []
        self.in_flight_seen: list[int] = []
        self.on_launch: Callable[[int], None] | None = None
        self.on_wait: Callable[[], None] | None = None
        self._next_pid = 50_000

    def _current_scheduler(self) -> WorkerPoolScheduler:
        scheduler = self.scheduler
        if scheduler is None and self._scheduler_source is not None:
            scheduler = self._scheduler_source()
        assert scheduler is not None, "ScriptedLauncher is not attached to a scheduler"
        return scheduler

    def launch(self) -> WorkerProcess:
        attempt = self.launch_attempts
        self.launch_attempts += 1
        if self.always_fail or attempt in self.failing_launches:
            raise SpawnError(f"fork refused (attempt {attempt})")

        pid = self._next_pid
        self._next_pid += 1
        self.running.append(pid)
        if self.on_launch is not None:
            self.on_launch(pid)
        return WorkerProcess(pid=pid)

    def wait_any(self) -> list[tuple[int, int]]:
        scheduler = self._current_scheduler()
        self.wait_calls += 1
        self.targets_seen.append(scheduler.target_parallelism)
        self.in_flight_seen.append(len(scheduler.in_flight))
        if self.on_wait is not None:
            self.on_wait()

        if not self.running:
            return []

        reaped: list[tuple[int, int]] = []
        for _ in range(min(self.batch, len(self.running))):
            pid = self.running.pop(0)
            if scheduler.stop_requested:
                reaped.append((pid, signal_status(signal.SIGTERM)))
                continue
            outcome = self.outcomes.pop(0) if self.outcomes else WorkerOutcome.IDLE
            reaped.append((pid, outcome_status(outcome)))
            if not self.outcomes:
                scheduler.request_stop()
        return reaped
