"""Structured logging infrastructure for Tiller.

Provides structured logging through structlog, tagged with the role of the
emitting process (supervisor or worker) so that interleaved lines in the
shared append-only log files can be told apart.

Example usage:
    from tiller.core.logging import configure_logging, get_logger

    # Configure once at startup
    configure_logging(level="DEBUG", format="console")

    # Get a component-specific logger
    logger = get_logger("scheduler")

    # Log with structured fields
    logger.info("worker_spawned", pid=4242)

    # Tag every entry emitted by this process
    with with_context(WorkerContext(role="worker")):
        logger.info("unit_started")  # includes role and pid
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging.handlers import WatchedFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]

# Sensitive field patterns that should never be logged
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "token",
    "secret",
    "password",
    "credential",
    "authorization",
})


@dataclass(frozen=True)
class WorkerContext:
    """Immutable process-level context added to every log entry.

    Attributes:
        role: ``"supervisor"`` for the scheduling process, ``"worker"`` for
            a spawned unit-of-work process, ``"debug"`` for foreground runs.
        pid: Process id, captured at construction time.
    """

    role: str
    pid: int = field(default_factory=os.getpid)

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "pid": self.pid}


_current_context: ContextVar[WorkerContext | None] = ContextVar(
    "tiller_context", default=None
)


def get_current_context() -> WorkerContext | None:
    """Get the current WorkerContext if set."""
    return _current_context.get()


def set_context(ctx: WorkerContext) -> None:
    """Set the current WorkerContext.

    The supervisor calls this right after detaching, since the pid changes
    across the fork. Prefer ``with_context()`` for scoped use.
    """
    _current_context.set(ctx)


def clear_context() -> None:
    """Clear the current WorkerContext."""
    _current_context.set(None)


@contextmanager
def with_context(ctx: WorkerContext) -> Iterator[WorkerContext]:
    """Set the WorkerContext for the duration of a block."""
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts values under sensitive keys."""
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        key_lower = key.lower()
        if any(pattern in key_lower for pattern in SENSITIVE_PATTERNS):
            sanitized[key] = "[REDACTED]"
        else:
            sanitized[key] = value
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that adds an ISO8601 UTC timestamp."""
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that adds WorkerContext fields.

    Explicitly bound fields take precedence over context fields.
    """
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            event_dict.setdefault(key, value)
    return event_dict


class TillerLogger:
    """Component logger wrapper around structlog.

    Loggers are usually created at module import time, before
    ``configure_logging()`` runs. The underlying structlog logger is
    therefore fetched on every call so it always reflects the current
    configuration.
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    @property
    def component(self) -> str:
        return self._component

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    def bind(self, **context: Any) -> TillerLogger:
        """Create a new logger with additional bound context."""
        new_logger = TillerLogger.__new__(TillerLogger)
        new_logger._component = self._component
        new_logger._context = {**self._context, **context}
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def critical(self, event: str, **kw: Any) -> None:
        self._get_logger().critical(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log an exception with traceback. Call from an exception handler."""
        self._get_logger().exception(event, **kw)


def _build_processors(format: LogFormat, include_timestamps: bool) -> list[Processor]:  # noqa: A002
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
        _add_context,
    ]
    if include_timestamps:
        processors.append(_add_timestamp)

    renderer: Processor
    if format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ])
    return processors


def configure_logging(
    level: LogLevel = "INFO",
    format: LogFormat = "console",  # noqa: A002
    file_path: Path | None = None,
    include_timestamps: bool = True,
) -> None:
    """Configure Tiller structured logging.

    Log records go to ``sys.stderr``, which writes to file descriptor 2.
    Detachment ``dup2``s the configured error log onto that descriptor, so
    records logged after detachment land in the error log without
    reconfiguring.

    Args:
        level: Minimum log level to capture.
        format: ``"json"`` for one JSON object per line, ``"console"`` for
            human-readable output.
        file_path: Optional extra log file. Opened with a
            ``WatchedFileHandler`` so several worker processes can append to
            the same file and external rotation is picked up.
        include_timestamps: Whether to include ISO8601 timestamps.
    """
    log_level = getattr(logging, level)

    handlers: list[logging.Handler] = []
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(log_level)
    handlers.append(stream_handler)

    if file_path is not None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = WatchedFileHandler(file_path, mode="a", encoding="utf-8")
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)

    # cache_logger_on_first_use=False keeps import-time loggers in sync
    # with any later configure_logging() call.
    structlog.configure(
        processors=_build_processors(format, include_timestamps),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> TillerLogger:
    """Get a Tiller logger for a component (e.g. ``"daemon.scheduler"``)."""
    return TillerLogger(component, **initial_context)


__all__ = [
    "SENSITIVE_PATTERNS",
    "LogFormat",
    "LogLevel",
    "TillerLogger",
    "WorkerContext",
    "clear_context",
    "configure_logging",
    "get_current_context",
    "get_logger",
    "set_context",
    "with_context",
]
