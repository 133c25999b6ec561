"""Exception hierarchy for the Tiller daemon.

All daemon-specific exceptions inherit from DaemonError, enabling callers
to catch broad (DaemonError) or narrow (e.g., DetachmentError). Only the
startup errors are meant to escape to the invoking environment; steady-state
failures are absorbed by the scheduler's throttle loop.
"""

from __future__ import annotations


class DaemonError(Exception):
    """Base exception for all daemon-related errors."""


class ConfigError(DaemonError):
    """Raised when daemon configuration cannot be loaded or resolved.

    Examples: unreadable YAML, schema violations, an import path in
    ``constraints`` or the work-unit target that does not resolve.
    """


class ConstraintViolationError(DaemonError):
    """Raised when a startup constraint is not fulfilled.

    Fatal: aborts startup before detachment, so nothing is ever spawned.
    """

    def __init__(self, message: str, *, constraint: str | None = None) -> None:
        super().__init__(message)
        self.constraint = constraint


class DetachmentError(DaemonError):
    """Raised when the OS refuses to give the daemon a new session.

    Fatal: the detached child exits non-zero before any worker is spawned.
    """


class SpawnError(DaemonError):
    """Raised when the OS refuses to create a worker process.

    Never fatal to the scheduler; it is folded into the throttle rule as a
    failed worker.
    """


class DaemonAlreadyRunningError(DaemonError):
    """Raised when the configured PID file is locked by a live daemon."""
