"""Configuration models for the Tiller daemon.

Defines the Pydantic v2 model for daemon settings (pool size, pacing, log
redirection, startup constraints) and the YAML loader used by the CLI.
The config is frozen once built; overrides go through ``model_copy(update=...)``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from tiller.core.logging import get_logger
from tiller.daemon.exceptions import ConfigError

_logger = get_logger("daemon.config")

_DEVNULL = Path(os.devnull)


class DaemonConfig(BaseModel):
    """Top-level configuration for a Tiller daemon.

    Controls worker-pool size, worker pacing, where detached standard
    streams go, and which preconditions must hold before the daemon starts.
    """

    model_config = ConfigDict(frozen=True)

    quiet_period: float = Field(
        default=1.0,
        ge=0.0,
        description="Seconds a worker sleeps after its unit of work returns, "
        "before it exits. Bounds busy-looping when there is no work.",
    )
    ramp_up_time: float = Field(
        default=0.0,
        ge=0.0,
        description="Seconds the supervisor waits once after detaching, "
        "before the first worker is spawned.",
    )
    max_parallel: int = Field(
        default=1,
        ge=1,
        description="Upper bound on concurrently running workers. The pool "
        "starts here and returns here whenever a worker reports work.",
    )
    output_log: Path = Field(
        default=_DEVNULL,
        description="Append target for standard output after detachment. "
        "Shared by the supervisor and all workers.",
    )
    error_log: Path = Field(
        default=_DEVNULL,
        description="Append target for standard error (and structured logs) "
        "after detachment. Shared by the supervisor and all workers.",
    )
    constraints: list[str] = Field(
        default_factory=list,
        description="Ordered import paths ('module:attr') of startup "
        "constraints. Each attr is a constraint object or a zero-argument "
        "factory returning one.",
    )
    working_directory: Path | None = Field(
        default=None,
        description="Directory the daemon changes into after detaching. "
        "None means the directory the daemon was started from.",
    )
    spawn_retry_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Seconds to pause after a failed spawn when no other "
        "worker is in flight to wait on.",
    )
    pid_file: Path | None = Field(
        default=None,
        description="Optional PID file written by the detached supervisor. "
        "Enables 'tiller stop' and 'tiller status'.",
    )
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Minimum log level for structlog output.",
    )
    log_file: Path | None = Field(
        default=None,
        description="Extra structured log file, in addition to stderr.",
    )

    @field_validator("constraints")
    @classmethod
    def _validate_constraint_paths(cls, v: list[str]) -> list[str]:
        """Require 'module:attr' form for every constraint path."""
        for path in v:
            module, sep, attr = path.partition(":")
            if not sep or not module or not attr:
                raise ValueError(
                    f"Constraint path must look like 'module:attr', got {path!r}"
                )
        return v

    @model_validator(mode="after")
    def _reject_directory_logs(self) -> DaemonConfig:
        """Log targets are opened for append and must not be directories."""
        for name in ("output_log", "error_log"):
            target: Path = getattr(self, name)
            if target != _DEVNULL and target.is_dir():
                raise ValueError(f"{name} points at a directory: {target}")
        return self


def load_config(config_file: Path | None, **overrides: Any) -> DaemonConfig:
    """Load a DaemonConfig from YAML, or defaults when no file is given.

    Keyword overrides whose value is ``None`` are ignored so CLI options
    that were not passed leave the file's values alone.

    Raises:
        ConfigError: The file is missing, is not valid YAML, or does not
            match the schema.
    """
    data: dict[str, Any] = {}
    if config_file is not None:
        try:
            with open(config_file) as f:
                loaded = yaml.safe_load(f)
        except OSError as exc:
            raise ConfigError(f"Cannot read config file {config_file}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_file}: {exc}") from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(
                f"Config file {config_file} must contain a mapping, "
                f"got {type(loaded).__name__}"
            )
        data = loaded

    data.update({k: v for k, v in overrides.items() if v is not None})
    try:
        config = DaemonConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid daemon configuration: {exc}") from exc

    _logger.debug(
        "config.loaded",
        config_file=str(config_file) if config_file else None,
        max_parallel=config.max_parallel,
    )
    return config


__all__ = ["DaemonConfig", "load_config"]
