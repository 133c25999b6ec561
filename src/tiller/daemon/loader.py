"""Resolution of ``module:attr`` import paths.

Used for the work-unit target given on the command line and for the
constraint list in the daemon config. The resolved attribute may be an
instance, a class, or any zero-argument factory; classes and factories are
called once to produce the object.
"""

from __future__ import annotations

import importlib
import inspect
import sys
from pathlib import Path
from typing import Any

from tiller.daemon.exceptions import ConfigError


def ensure_on_path(directory: Path) -> None:
    """Make modules in ``directory`` importable, as ``python -m`` would.

    The ``tiller`` console script does not put the current directory on
    ``sys.path``; workers started with ``-m tiller`` do.
    """
    entry = str(directory.resolve())
    if entry not in sys.path:
        sys.path.insert(0, entry)


def resolve_object(path: str) -> Any:
    """Import ``module:attr`` and return the attribute itself.

    Dotted attributes (``module:Outer.inner``) are followed.

    Raises:
        ConfigError: Malformed path, import failure, or missing attribute.
    """
    module_name, sep, attr_path = path.partition(":")
    if not sep or not module_name or not attr_path:
        raise ConfigError(f"Import path must look like 'module:attr', got {path!r}")

    try:
        target: Any = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(f"Cannot import module {module_name!r}: {exc}") from exc

    for part in attr_path.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as exc:
            raise ConfigError(f"{module_name!r} has no attribute {attr_path!r}") from exc
    return target


def instantiate(path: str) -> Any:
    """Resolve ``path`` and call it when it is a class or plain function."""
    target = resolve_object(path)
    if inspect.isclass(target) or inspect.isfunction(target):
        try:
            return target()
        except TypeError as exc:
            raise ConfigError(
                f"{path!r} must be callable without arguments: {exc}"
            ) from exc
    return target


__all__ = ["ensure_on_path", "instantiate", "resolve_object"]
