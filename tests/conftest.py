"""Pytest fixtures for Tiller tests."""

import logging
import os
import sys
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from tiller.core.logging import clear_context
from tiller.daemon import pidfile
from tiller.daemon.config import DaemonConfig


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging state before and after each test.

    This ensures test isolation for logging configuration.
    """
    structlog.reset_defaults()
    clear_context()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        if handler not in original_handlers:
            handler.close()
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)
    structlog.reset_defaults()
    clear_context()


@pytest.fixture(autouse=True)
def release_pid_lock() -> Generator[None, None, None]:
    """Drop any PID-file lock a test left behind."""
    yield
    if pidfile._pid_lock_fd is not None:
        os.close(pidfile._pid_lock_fd)
        pidfile._pid_lock_fd = None


@pytest.fixture
def fast_config(tmp_path: Path) -> DaemonConfig:
    """Config with no pauses, suitable for driving the loop in-process."""
    return DaemonConfig(
        quiet_period=0.0,
        ramp_up_time=0.0,
        max_parallel=4,
        spawn_retry_delay=0.0,
        working_directory=tmp_path,
    )


@pytest.fixture
def module_dir(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
) -> Generator[Path, None, None]:
    """A directory on sys.path for throwaway importable modules."""
    directory = tmp_path / "modules"
    directory.mkdir()
    monkeypatch.syspath_prepend(str(directory))
    yield directory
    for name in [
        name for name, module in sys.modules.items()
        if getattr(module, "__file__", None)
        and str(directory) in str(module.__file__)
    ]:
        del sys.modules[name]
