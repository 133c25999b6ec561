"""Tests for tiller.daemon.scheduler.

Drives the fill/drain loop against ScriptedLauncher, an in-memory process
layer, so every scenario is deterministic and needs no real children.
"""

from __future__ import annotations

import random
import signal
from collections.abc import Iterator
from unittest.mock import MagicMock, patch

import pytest

from tests.helpers import ScriptedLauncher, exit_status
from tiller.daemon.config import DaemonConfig
from tiller.daemon.scheduler import WorkerPoolScheduler
from tiller.daemon.types import WorkerOutcome

DID_WORK = WorkerOutcome.DID_WORK
IDLE = WorkerOutcome.IDLE
FAILED = WorkerOutcome.FAILED


@pytest.fixture(autouse=True)
def mock_kill() -> Iterator[MagicMock]:
    """Scripted workers have made-up pids; never signal real processes."""
    with patch("tiller.daemon.worker.os.kill") as kill:
        yield kill


def make_scheduler(
    launcher: ScriptedLauncher,
    *,
    max_parallel: int = 4,
    spawn_retry_delay: float = 0.0,
    pgroup: MagicMock | None = None,
) -> WorkerPoolScheduler:
    config = DaemonConfig(
        quiet_period=0.0,
        max_parallel=max_parallel,
        spawn_retry_delay=spawn_retry_delay,
    )
    scheduler = WorkerPoolScheduler(config, launcher, pgroup=pgroup)
    launcher.scheduler = scheduler
    return scheduler


# ─── Scenarios ─────────────────────────────────────────────────────────


class TestScenarios:
    """End-to-end outcome sequences through the fill/drain loop."""

    def test_idle_backoff(self):
        """Idle workers shrink the pool one step at a time down to one."""
        launcher = ScriptedLauncher([IDLE] * 5)
        scheduler = make_scheduler(launcher, max_parallel=4)

        stats = scheduler.run()

        assert launcher.targets_seen == [4, 3, 2, 1, 1]
        assert launcher.in_flight_seen == [4, 3, 2, 1, 1]
        assert stats.spawned == 5
        assert stats.idle == 5
        assert stats.target_parallelism == 1

    def test_recovery_refills_to_max(self):
        """One productive worker restores full parallelism immediately."""
        launcher = ScriptedLauncher([IDLE, IDLE, IDLE, DID_WORK, IDLE])
        scheduler = make_scheduler(launcher, max_parallel=4)

        stats = scheduler.run()

        assert launcher.targets_seen[:5] == [4, 3, 2, 1, 4]
        # Refilled to four before the next wait.
        assert launcher.in_flight_seen[4] == 4
        assert stats.did_work == 1
        assert stats.spawned == 8

    def test_single_worker_keeps_respawning_on_failure(self):
        """max_parallel=1: a crashing worker is replaced one at a time."""
        launcher = ScriptedLauncher([FAILED] * 5)
        scheduler = make_scheduler(launcher, max_parallel=1)

        stats = scheduler.run()

        assert launcher.targets_seen == [1, 1, 1, 1, 1]
        assert launcher.in_flight_seen == [1, 1, 1, 1, 1]
        assert stats.spawned == 5
        assert stats.failed == 5

    def test_fill_and_bounds_hold_for_random_outcomes(self):
        """Whenever the loop blocks, the pool is full and within bounds."""
        rng = random.Random(7)
        outcomes = [rng.choice(list(WorkerOutcome)) for _ in range(60)]
        launcher = ScriptedLauncher(outcomes)
        scheduler = make_scheduler(launcher, max_parallel=3)

        scheduler.run()

        # One scripted outcome per wait until the stop.
        for target, in_flight in zip(
            launcher.targets_seen[:60], launcher.in_flight_seen[:60], strict=True,
        ):
            assert 1 <= target <= 3
            assert target <= in_flight <= 3


# ─── Drain ─────────────────────────────────────────────────────────────


class TestDrain:
    """Tests for reaping several workers per wait."""

    def test_batch_applied_in_reported_order_idle_last(self):
        launcher = ScriptedLauncher([DID_WORK, IDLE, IDLE], batch=2)
        scheduler = make_scheduler(launcher, max_parallel=2)

        scheduler.run()

        # DID_WORK then IDLE: 2 → 2 → 1, so only one worker is refilled.
        assert launcher.targets_seen[1] == 1
        assert launcher.in_flight_seen[1] == 1

    def test_batch_applied_in_reported_order_did_work_last(self):
        launcher = ScriptedLauncher([IDLE, DID_WORK, IDLE], batch=2)
        scheduler = make_scheduler(launcher, max_parallel=2)

        scheduler.run()

        # IDLE then DID_WORK: 2 → 1 → 2, so the pool refills to two.
        assert launcher.targets_seen[1] == 2
        assert launcher.in_flight_seen[1] == 2

    def test_unknown_child_is_ignored(self):
        """A pid that is not one of ours does not touch the throttle."""

        class StrayChildLauncher(ScriptedLauncher):
            def wait_any(self):
                reaped = super().wait_any()
                if self.wait_calls == 1:
                    return [(4242, exit_status(1)), *reaped]
                return reaped

        launcher = StrayChildLauncher([DID_WORK])
        scheduler = make_scheduler(launcher, max_parallel=1)

        stats = scheduler.run()

        assert stats.reaped == 1
        assert stats.failed == 0
        assert stats.did_work == 1

    def test_lost_workers_count_as_failed(self):
        """Workers the OS no longer reports are dropped and throttled."""
        launcher = ScriptedLauncher([IDLE])
        first_wait = [True]

        def lose_everything():
            if first_wait[0]:
                first_wait[0] = False
                launcher.running.clear()

        launcher.on_wait = lose_everything
        scheduler = make_scheduler(launcher, max_parallel=2)

        stats = scheduler.run()

        assert stats.failed == 2
        assert stats.idle == 1
        assert stats.spawned == 3
        assert launcher.targets_seen == [2, 1]


# ─── Spawn failures ────────────────────────────────────────────────────


class TestSpawnFailures:
    """Spawn errors are folded into the throttle rule, never raised."""

    def test_failure_mid_fill_lowers_target(self):
        launcher = ScriptedLauncher([DID_WORK], failing_launches={1})
        scheduler = make_scheduler(launcher, max_parallel=3)

        with patch("tiller.daemon.scheduler.time.sleep") as mock_sleep:
            stats = scheduler.run()

        assert stats.spawn_failures == 1
        assert launcher.targets_seen[0] == 2
        assert launcher.in_flight_seen[0] == 1
        mock_sleep.assert_not_called()

    def test_pauses_when_nothing_in_flight(self):
        """Repeated failures with an empty pool sleep between attempts."""
        launcher = ScriptedLauncher(always_fail=True)
        scheduler = make_scheduler(launcher, max_parallel=2, spawn_retry_delay=0.5)
        sleeps: list[float] = []

        def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)
            if len(sleeps) == 3:
                scheduler.request_stop()

        with patch("tiller.daemon.scheduler.time.sleep", side_effect=fake_sleep):
            stats = scheduler.run()

        assert sleeps == [0.5, 0.5, 0.5]
        assert stats.spawn_failures == 3
        assert stats.spawned == 0
        assert stats.target_parallelism == 1

    def test_recovers_after_transient_failure(self):
        launcher = ScriptedLauncher([IDLE], failing_launches={0})
        scheduler = make_scheduler(launcher, max_parallel=1, spawn_retry_delay=0.25)

        with patch("tiller.daemon.scheduler.time.sleep") as mock_sleep:
            stats = scheduler.run()

        mock_sleep.assert_called_once_with(0.25)
        assert stats.spawned == 1
        assert stats.idle == 1


# ─── Shutdown ──────────────────────────────────────────────────────────


class TestShutdown:
    """Tests for stop requests and worker termination."""

    def test_stop_before_run_spawns_nothing(self):
        launcher = ScriptedLauncher([IDLE])
        scheduler = make_scheduler(launcher)
        scheduler.request_stop()

        stats = scheduler.run()

        assert launcher.launch_attempts == 0
        assert stats.spawned == 0

    def test_remaining_workers_signalled_and_reaped(self, mock_kill):
        launcher = ScriptedLauncher([IDLE])
        scheduler = make_scheduler(launcher, max_parallel=3)

        stats = scheduler.run()

        signalled = sorted(call.args for call in mock_kill.call_args_list)
        assert [sig for _, sig in signalled] == [signal.SIGTERM, signal.SIGTERM]
        assert stats.in_flight == 0
        assert stats.reaped == 3
        assert stats.failed == 2

    def test_uses_process_group_when_available(self, mock_kill):
        pgroup = MagicMock()
        pgroup.kill_all_children.return_value = 2
        launcher = ScriptedLauncher([IDLE])
        scheduler = make_scheduler(launcher, max_parallel=3, pgroup=pgroup)

        scheduler.run()

        pgroup.kill_all_children.assert_called_once_with(signal.SIGTERM)
        mock_kill.assert_not_called()

    def test_falls_back_when_group_signals_nothing(self, mock_kill):
        pgroup = MagicMock()
        pgroup.kill_all_children.return_value = 0
        launcher = ScriptedLauncher([IDLE])
        scheduler = make_scheduler(launcher, max_parallel=2, pgroup=pgroup)

        scheduler.run()

        assert mock_kill.call_count == 1

    def test_terminate_workers_with_empty_pool(self):
        scheduler = make_scheduler(ScriptedLauncher())
        assert scheduler.terminate_workers() == 0


# ─── Observation ───────────────────────────────────────────────────────


class TestObservation:
    """Tests for read-only scheduler state."""

    def test_initial_state(self):
        scheduler = make_scheduler(ScriptedLauncher(), max_parallel=5)
        stats = scheduler.stats()

        assert scheduler.target_parallelism == 5
        assert stats.max_parallel == 5
        assert stats.in_flight == 0
        assert scheduler.stop_requested is False

    def test_in_flight_is_read_only(self):
        scheduler = make_scheduler(ScriptedLauncher())
        with pytest.raises(TypeError):
            scheduler.in_flight[1] = None  # type: ignore[index]
