"""Startup constraints.

Constraints ensure that every requirement for running a daemon holds before
anything irreversible happens. They are evaluated once, in order, strictly
before detachment; the first violation aborts startup and no worker is ever
spawned. Tiller ships no built-in constraints; embedding applications supply
them (for example "only one instance may run" or "the database must be
reachable").
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from tiller.core.logging import get_logger
from tiller.daemon.exceptions import ConfigError, ConstraintViolationError
from tiller.daemon.loader import instantiate
from tiller.daemon.types import RunMode

if TYPE_CHECKING:
    from tiller.daemon.config import DaemonConfig

_logger = get_logger("daemon.constraints")


@dataclass(frozen=True)
class SupervisorContext:
    """Read-only view of the starting daemon, handed to each constraint."""

    config: DaemonConfig
    mode: RunMode
    spawn_command: tuple[str, ...] = ()


@runtime_checkable
class Constraint(Protocol):
    """A single startup precondition.

    ``check()`` returns normally when the precondition holds and raises
    ``ConstraintViolationError`` with a descriptive message when it does not.
    """

    def check(self, context: SupervisorContext) -> None: ...


def _constraint_name(constraint: Constraint) -> str:
    return type(constraint).__qualname__


class ConstraintSet:
    """Ordered collection of constraints, evaluated first to last."""

    def __init__(self, constraints: Iterable[Constraint] = ()) -> None:
        self._constraints: list[Constraint] = list(constraints)

    def __len__(self) -> int:
        return len(self._constraints)

    def __iter__(self) -> Iterator[Constraint]:
        return iter(self._constraints)

    def add(self, constraint: Constraint) -> None:
        """Append a constraint to the end of the evaluation order."""
        if not isinstance(constraint, Constraint):
            raise TypeError(
                f"{type(constraint).__name__} does not implement check(context)"
            )
        self._constraints.append(constraint)

    def check_all(self, context: SupervisorContext) -> None:
        """Evaluate every constraint in order.

        Stops at the first failure. Unexpected exceptions raised by a
        constraint are reported as violations of that constraint.

        Raises:
            ConstraintViolationError: A constraint is not fulfilled.
        """
        for constraint in self._constraints:
            name = _constraint_name(constraint)
            try:
                constraint.check(context)
            except ConstraintViolationError as exc:
                if exc.constraint is None:
                    exc.constraint = name
                _logger.error("constraints.violated", constraint=name, reason=str(exc))
                raise
            except Exception as exc:
                _logger.error(
                    "constraints.check_crashed",
                    constraint=name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise ConstraintViolationError(
                    f"Constraint {name} failed: {exc}", constraint=name,
                ) from exc
            _logger.debug("constraints.passed", constraint=name)


def load_constraints(paths: Sequence[str]) -> list[Constraint]:
    """Instantiate constraints from ``module:attr`` import paths.

    Raises:
        ConfigError: A path does not resolve to an object with ``check()``.
    """
    constraints: list[Constraint] = []
    for path in paths:
        obj = instantiate(path)
        if not isinstance(obj, Constraint):
            raise ConfigError(f"{path!r} does not provide a check(context) method")
        constraints.append(obj)
    return constraints


__all__ = [
    "Constraint",
    "ConstraintSet",
    "SupervisorContext",
    "load_constraints",
]
