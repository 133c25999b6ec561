"""Session detachment.

Performs the fixed OS sequence that turns the invoking process into a
background daemon: fork (the parent exits 0 right away), clear the file
creation mask, become a session leader, move to the anchor directory and
reopen the standard streams (stdin from the null device, stdout and stderr
appended to the configured logs).

There are no decisions here. The only failure with a dedicated error is
``setsid()`` being refused, which is fatal before any worker is spawned.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from tiller.core.logging import get_logger
from tiller.daemon.exceptions import DetachmentError

_logger = get_logger("daemon.detach")


def _open_append(path: Path) -> int:
    return os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o644)


class Daemonizer:
    """Detaches the current process from its terminal session, once."""

    def __init__(
        self,
        *,
        working_directory: Path,
        output_log: Path,
        error_log: Path,
    ) -> None:
        # Resolved now: relative paths would break after chdir().
        self.working_directory = working_directory.absolute()
        self.output_log = output_log.absolute()
        self.error_log = error_log.absolute()
        self._detached = False

    @property
    def detached(self) -> bool:
        return self._detached

    def detach(self) -> None:
        """Run the detachment sequence. Only the detached child returns.

        Raises:
            DetachmentError: The fork or the new session was refused. Raised
                while stderr still points at the invoking terminal.
        """
        if self._detached:
            return

        sys.stdout.flush()
        sys.stderr.flush()

        try:
            pid = os.fork()
        except OSError as exc:
            raise DetachmentError(f"Cannot fork into the background: {exc}") from exc
        if pid > 0:
            sys.exit(0)

        os.umask(0)

        try:
            os.setsid()
        except OSError as exc:
            _logger.critical("detach.setsid_failed", error=str(exc))
            raise DetachmentError(f"Could not detach session id: {exc}") from exc

        os.chdir(self.working_directory)
        self._reopen_standard_streams()
        self._detached = True

        _logger.info(
            "detach.complete",
            pid=os.getpid(),
            sid=os.getsid(0),
            cwd=str(self.working_directory),
        )

    def _reopen_standard_streams(self) -> None:
        sys.stdout.flush()
        sys.stderr.flush()

        devnull = os.open(os.devnull, os.O_RDONLY)
        stdout_fd = _open_append(self.output_log)
        stderr_fd = _open_append(self.error_log)
        try:
            os.dup2(devnull, 0)
            os.dup2(stdout_fd, 1)
            os.dup2(stderr_fd, 2)
        finally:
            os.close(devnull)
            os.close(stdout_fd)
            os.close(stderr_fd)


__all__ = ["Daemonizer"]
