"""Worker-pool scheduler: adaptive concurrency over an OS process pool.

The scheduler keeps up to ``target_parallelism`` workers in flight and
adapts that target from each worker's outcome (see ``throttle.py``). It
alternates between two phases:

Fill
    Spawn workers until ``len(in_flight) == target_parallelism``.
Drain
    Block until at least one worker terminates, then for each terminated
    worker (in the order the OS reported them) decode its outcome, drop it
    from ``in_flight`` and apply the throttle rule. Keep draining, without
    spawning, while ``len(in_flight) >= target_parallelism``.

Steady-state errors never escape the loop. A worker that crashes and a
spawn the OS refuses are both folded into the throttle rule as
``FAILED``, so the pool degrades to fewer workers instead of stopping.
When a spawn fails with nothing in flight, the loop pauses for
``spawn_retry_delay`` rather than retrying in a tight loop.

The loop runs until ``request_stop()`` is called (the supervisor wires this
to SIGTERM/SIGINT). It then signals the remaining workers and reaps them.

Everything here runs in the supervisor's single thread: ``target`` and
``in_flight`` are never touched concurrently and need no locking.
"""

from __future__ import annotations

import signal
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING

from tiller.core.logging import get_logger
from tiller.daemon.exceptions import SpawnError
from tiller.daemon.throttle import ThrottleController
from tiller.daemon.types import WorkerOutcome

if TYPE_CHECKING:
    from collections.abc import Mapping

    from tiller.daemon.config import DaemonConfig
    from tiller.daemon.pgroup import ProcessGroupManager
    from tiller.daemon.worker import WorkerLauncher, WorkerProcess

_logger = get_logger("daemon.scheduler")


@dataclass
class SchedulerStats:
    """Statistics snapshot from the scheduler."""

    target_parallelism: int
    max_parallel: int
    in_flight: int
    spawned: int = 0
    reaped: int = 0
    did_work: int = 0
    idle: int = 0
    failed: int = 0
    spawn_failures: int = 0


class WorkerPoolScheduler:
    """Owns the fill/drain loop and the adaptive target parallelism.

    The process layer is injected as a ``WorkerLauncher`` so the same loop
    drives real subprocesses in production and scripted fakes in tests.
    """

    def __init__(
        self,
        config: DaemonConfig,
        launcher: WorkerLauncher,
        *,
        pgroup: ProcessGroupManager | None = None,
    ) -> None:
        self._config = config
        self._launcher = launcher
        self._pgroup = pgroup
        self._throttle = ThrottleController(config.max_parallel)
        self._in_flight: dict[int, WorkerProcess] = {}
        self._stop_requested = False
        self._counts: dict[WorkerOutcome, int] = {outcome: 0 for outcome in WorkerOutcome}
        self._spawned = 0
        self._spawn_failures = 0

    # ─── Observation ───────────────────────────────────────────────

    @property
    def target_parallelism(self) -> int:
        return self._throttle.target

    @property
    def in_flight(self) -> Mapping[int, WorkerProcess]:
        """Read-only view of running workers, keyed by pid."""
        return MappingProxyType(self._in_flight)

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def stats(self) -> SchedulerStats:
        return SchedulerStats(
            target_parallelism=self._throttle.target,
            max_parallel=self._throttle.max_parallel,
            in_flight=len(self._in_flight),
            spawned=self._spawned,
            reaped=sum(self._counts.values()),
            did_work=self._counts[WorkerOutcome.DID_WORK],
            idle=self._counts[WorkerOutcome.IDLE],
            failed=self._counts[WorkerOutcome.FAILED],
            spawn_failures=self._spawn_failures,
        )

    # ─── Control ───────────────────────────────────────────────────

    def request_stop(self) -> None:
        """Ask the loop to stop at its next decision point.

        Safe to call from a signal handler: it only flips a flag.
        """
        self._stop_requested = True

    def run(self) -> SchedulerStats:
        """Run the fill/drain loop until a stop is requested.

        Returns:
            Final statistics, after all remaining workers were reaped.
        """
        _logger.info(
            "scheduler.started",
            max_parallel=self._throttle.max_parallel,
            quiet_period=self._config.quiet_period,
        )

        while not self._stop_requested:
            self._fill()
            if self._stop_requested:
                break
            if not self._in_flight:
                # Every spawn attempt failed and there is nothing to wait on.
                time.sleep(self._config.spawn_retry_delay)
                continue
            self._drain()

        self._shutdown()
        stats = self.stats()
        _logger.info(
            "scheduler.stopped",
            spawned=stats.spawned,
            reaped=stats.reaped,
            did_work=stats.did_work,
            idle=stats.idle,
            failed=stats.failed,
            spawn_failures=stats.spawn_failures,
        )
        return stats

    # ─── Phases ────────────────────────────────────────────────────

    def _fill(self) -> None:
        while len(self._in_flight) < self._throttle.target and not self._stop_requested:
            try:
                worker = self._launcher.launch()
            except SpawnError as exc:
                self._spawn_failures += 1
                target = self._throttle.apply(WorkerOutcome.FAILED)
                _logger.warning(
                    "scheduler.spawn_failed",
                    error=str(exc),
                    in_flight=len(self._in_flight),
                    target=target,
                )
                return

            self._in_flight[worker.pid] = worker
            self._spawned += 1
            _logger.debug(
                "scheduler.worker_spawned",
                pid=worker.pid,
                in_flight=len(self._in_flight),
                target=self._throttle.target,
            )

    def _drain(self) -> None:
        while self._in_flight:
            reaped = self._launcher.wait_any()
            if not reaped:
                self._forget_lost_workers()
                return

            for pid, status in reaped:
                self._reap(pid, status)

            if self._stop_requested or len(self._in_flight) < self._throttle.target:
                return

    def _reap(self, pid: int, status: int) -> None:
        worker = self._in_flight.pop(pid, None)
        if worker is None:
            _logger.warning("scheduler.unknown_child_reaped", pid=pid, status=status)
            return

        outcome = worker.mark_exited(status)
        self._record(outcome)
        target = self._throttle.apply(outcome)

        log = _logger.warning if outcome is WorkerOutcome.FAILED else _logger.debug
        log(
            "scheduler.worker_reaped",
            pid=pid,
            outcome=outcome.value,
            exit_code=worker.exit_code,
            runtime_seconds=round(worker.runtime_seconds(), 3),
            in_flight=len(self._in_flight),
            target=target,
        )

    def _record(self, outcome: WorkerOutcome) -> None:
        self._counts[outcome] += 1

    def _forget_lost_workers(self) -> None:
        """Drop workers the OS no longer reports as children.

        Happens only if something else reaped them; their outcome is
        unknown, so each counts as a failure.
        """
        lost = list(self._in_flight)
        _logger.error("scheduler.workers_lost", pids=lost)
        for pid in lost:
            del self._in_flight[pid]
            self._record(WorkerOutcome.FAILED)
            self._throttle.apply(WorkerOutcome.FAILED)

    def terminate_workers(self, sig: int = signal.SIGTERM) -> int:
        """Forward ``sig`` to every running worker.

        Goes through the process group when the supervisor leads one, so
        processes started by workers are reached too.

        Returns:
            Number of processes signalled.
        """
        if not self._in_flight:
            return 0
        signalled = self._pgroup.kill_all_children(sig) if self._pgroup is not None else 0
        if not signalled:
            signalled = sum(worker.terminate(sig) for worker in self._in_flight.values())
        return signalled

    def _shutdown(self) -> None:
        """Signal and reap whatever is still running."""
        if not self._in_flight:
            return

        _logger.info("scheduler.shutting_down", in_flight=len(self._in_flight))
        self.terminate_workers(signal.SIGTERM)

        while self._in_flight:
            reaped = self._launcher.wait_any()
            if not reaped:
                self._forget_lost_workers()
                break
            for pid, status in reaped:
                self._reap(pid, status)


__all__ = ["SchedulerStats", "WorkerPoolScheduler"]
