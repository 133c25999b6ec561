"""Tiller daemon: detachment, startup constraints and the worker pool."""

from tiller.daemon.config import DaemonConfig, load_config
from tiller.daemon.constraints import Constraint, ConstraintSet, SupervisorContext
from tiller.daemon.detach import Daemonizer
from tiller.daemon.exceptions import (
    ConfigError,
    ConstraintViolationError,
    DaemonAlreadyRunningError,
    DaemonError,
    DetachmentError,
    SpawnError,
)
from tiller.daemon.process import run_daemon
from tiller.daemon.scheduler import SchedulerStats, WorkerPoolScheduler
from tiller.daemon.supervisor import Supervisor
from tiller.daemon.throttle import ThrottleController
from tiller.daemon.types import RunMode, WorkerOutcome, WorkUnit
from tiller.daemon.worker import SubprocessLauncher, WorkerLauncher, WorkerProcess

__all__ = [
    "ConfigError",
    "Constraint",
    "ConstraintSet",
    "ConstraintViolationError",
    "DaemonAlreadyRunningError",
    "DaemonConfig",
    "DaemonError",
    "Daemonizer",
    "DetachmentError",
    "RunMode",
    "SchedulerStats",
    "SpawnError",
    "SubprocessLauncher",
    "Supervisor",
    "SupervisorContext",
    "ThrottleController",
    "WorkUnit",
    "WorkerLauncher",
    "WorkerOutcome",
    "WorkerPoolScheduler",
    "WorkerProcess",
    "load_config",
    "run_daemon",
]
