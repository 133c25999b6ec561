"""Shared data types for the Tiller daemon.

Defines the worker outcome encoding, the run mode decided by the outermost
entry point, and the protocol an embedding application implements to supply
the unit of work.
"""

from __future__ import annotations

import os
from enum import Enum
from typing import Protocol, runtime_checkable

# Exit status a worker uses to report that it found and processed something.
DID_WORK_EXIT_CODE = 42
IDLE_EXIT_CODE = 0

# Argument appended to the re-spawn command so a process knows it is a worker.
SPAWN_FLAG = "--spawn"


class WorkerOutcome(Enum):
    """Result of one worker's completion."""

    DID_WORK = "did_work"
    IDLE = "idle"
    FAILED = "failed"

    @classmethod
    def from_exit_code(cls, code: int) -> WorkerOutcome:
        """Decode an exit code as reported by ``subprocess`` (negative = signal)."""
        if code == DID_WORK_EXIT_CODE:
            return cls.DID_WORK
        if code == IDLE_EXIT_CODE:
            return cls.IDLE
        return cls.FAILED

    @classmethod
    def from_wait_status(cls, status: int) -> WorkerOutcome:
        """Decode a raw status word as returned by ``os.wait()``."""
        return cls.from_exit_code(os.waitstatus_to_exitcode(status))

    @property
    def exit_code(self) -> int:
        """Exit status a worker process uses to report this outcome."""
        if self is WorkerOutcome.DID_WORK:
            return DID_WORK_EXIT_CODE
        if self is WorkerOutcome.IDLE:
            return IDLE_EXIT_CODE
        return 1


class RunMode(str, Enum):
    """How this process invocation participates in the daemon.

    Decided once by the CLI and threaded into the Supervisor.
    """

    SUPERVISOR = "supervisor"  # detach and run the worker pool
    SPAWN = "spawn"            # one worker, re-invoked by a supervisor
    DEBUG = "debug"            # one unit of work in the foreground


@runtime_checkable
class WorkUnit(Protocol):
    """The only behavior an embedding application must supply.

    ``run()`` returns ``True`` (or ``WorkerOutcome.DID_WORK``) when it found
    and processed something, ``False``/``None`` (or ``WorkerOutcome.IDLE``)
    when there was nothing to do. Abnormal termination is the process
    layer's concern: raising, or returning ``WorkerOutcome.FAILED``, makes
    the worker exit non-zero.
    """

    def run(self) -> bool | WorkerOutcome | None: ...


def outcome_from_result(result: bool | WorkerOutcome | None) -> WorkerOutcome:
    """Normalize a ``WorkUnit.run()`` return value."""
    if isinstance(result, WorkerOutcome):
        return result
    return WorkerOutcome.DID_WORK if result else WorkerOutcome.IDLE


__all__ = [
    "DID_WORK_EXIT_CODE",
    "IDLE_EXIT_CODE",
    "SPAWN_FLAG",
    "RunMode",
    "WorkUnit",
    "WorkerOutcome",
    "outcome_from_result",
]
