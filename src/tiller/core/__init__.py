"""Shared infrastructure: structured logging."""

from tiller.core.logging import (
    TillerLogger,
    WorkerContext,
    configure_logging,
    get_logger,
    set_context,
    with_context,
)

__all__ = [
    "TillerLogger",
    "WorkerContext",
    "configure_logging",
    "get_logger",
    "set_context",
    "with_context",
]
