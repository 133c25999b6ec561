"""Throttle rule: outcome-driven pool sizing.

Maps each reaped worker's outcome to a new target parallelism:

- ``DID_WORK`` snaps the target back to ``max_parallel``, so concurrency is
  fully restored the moment real work shows up again.
- ``IDLE`` and ``FAILED`` lower the target by one, never below one, so an
  idle pool shrinks gradually but always keeps a worker probing for new
  work.

The controller holds no other state; it is applied once per reaped worker,
strictly sequentially, by the scheduler loop.
"""

from __future__ import annotations

from tiller.core.logging import get_logger
from tiller.daemon.types import WorkerOutcome

_logger = get_logger("daemon.throttle")


class ThrottleController:
    """Owns ``target_parallelism`` and keeps it within ``[1, max_parallel]``."""

    def __init__(self, max_parallel: int) -> None:
        if max_parallel < 1:
            raise ValueError(f"max_parallel must be >= 1, got {max_parallel}")
        self._max_parallel = max_parallel
        self._target = max_parallel

    @property
    def max_parallel(self) -> int:
        return self._max_parallel

    @property
    def target(self) -> int:
        """Number of workers the scheduler currently tries to keep alive."""
        return self._target

    def apply(self, outcome: WorkerOutcome) -> int:
        """Fold one worker outcome into the target and return the new value."""
        previous = self._target
        if outcome is WorkerOutcome.DID_WORK:
            self._target = self._max_parallel
        elif self._target > 1:
            self._target -= 1

        if self._target != previous:
            _logger.debug(
                "throttle.target_changed",
                outcome=outcome.value,
                previous=previous,
                target=self._target,
            )
        return self._target


__all__ = ["ThrottleController"]
