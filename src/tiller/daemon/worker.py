"""Worker processes and the subprocess launcher.

A worker is an independent OS process that re-invokes the daemon's own
entry point in spawn mode, runs one unit of work, sleeps the quiet period
and exits with a status that encodes its ``WorkerOutcome``. The supervisor
never shares memory with a worker; the exit status is the only channel.

``SubprocessLauncher`` is the production implementation of the
``WorkerLauncher`` protocol the scheduler consumes. Reaping goes through
``os.wait()`` rather than per-``Popen`` polling so the scheduler can block
on *any* child terminating.
"""

from __future__ import annotations

import os
import signal
import subprocess
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from tiller.core.logging import get_logger
from tiller.daemon.exceptions import SpawnError
from tiller.daemon.types import WorkerOutcome

_logger = get_logger("daemon.worker")


@dataclass
class WorkerProcess:
    """One spawned unit-of-work execution.

    Created at spawn time, dropped by the scheduler right after it has been
    reaped and folded into the throttle rule.
    """

    pid: int
    spawned_at: float = field(default_factory=time.monotonic)
    popen: subprocess.Popen[bytes] | None = field(default=None, repr=False)
    exit_code: int | None = None
    outcome: WorkerOutcome | None = None

    @property
    def alive(self) -> bool:
        return self.exit_code is None

    def mark_exited(self, status: int) -> WorkerOutcome:
        """Record the raw ``os.wait()`` status word and decode the outcome."""
        self.exit_code = os.waitstatus_to_exitcode(status)
        self.outcome = WorkerOutcome.from_wait_status(status)
        if self.popen is not None:
            # Reaped behind Popen's back; keep it consistent so it never
            # tries to wait for the pid again.
            self.popen.returncode = self.exit_code
        return self.outcome

    def runtime_seconds(self) -> float:
        return time.monotonic() - self.spawned_at

    def terminate(self, sig: int = signal.SIGTERM) -> bool:
        """Signal the worker if it is still running.

        Returns:
            True if the signal was delivered.
        """
        if not self.alive:
            return False
        try:
            os.kill(self.pid, sig)
            return True
        except ProcessLookupError:
            return False


class WorkerLauncher(Protocol):
    """What the scheduler needs from the process layer."""

    def launch(self) -> WorkerProcess:
        """Start one worker. Raises ``SpawnError`` if the OS refuses."""
        ...

    def wait_any(self) -> list[tuple[int, int]]:
        """Block until at least one child terminates.

        Returns ``(pid, status)`` pairs in the order the OS reported them,
        or an empty list when there are no children left to wait for.
        """
        ...


class SubprocessLauncher:
    """Spawns workers as fresh interpreter processes.

    Every worker gets its own append-mode handles on the shared log files,
    so concurrent writers never share a file offset.
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        output_log: Path | str = os.devnull,
        error_log: Path | str = os.devnull,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        if not command:
            raise ValueError("Worker command must not be empty")
        self.command = tuple(command)
        self.output_log = Path(output_log)
        self.error_log = Path(error_log)
        self.cwd = cwd
        self.env = env

    def launch(self) -> WorkerProcess:
        try:
            with (
                open(self.output_log, "ab") as stdout,
                open(self.error_log, "ab") as stderr,
            ):
                popen = subprocess.Popen(
                    self.command,
                    stdin=subprocess.DEVNULL,
                    stdout=stdout,
                    stderr=stderr,
                    cwd=self.cwd,
                    env=self.env,
                    close_fds=True,
                )
        except OSError as exc:
            raise SpawnError(f"Cannot spawn worker {self.command[0]!r}: {exc}") from exc

        _logger.debug("worker.spawned", pid=popen.pid, command=self.command[0])
        return WorkerProcess(pid=popen.pid, popen=popen)

    def wait_any(self) -> list[tuple[int, int]]:
        try:
            pid, status = os.wait()
        except ChildProcessError:
            return []

        reaped = [(pid, status)]
        # Fold in anything else that already exited, without blocking.
        while True:
            try:
                pid, status = os.waitpid(-1, os.WNOHANG)
            except ChildProcessError:
                break
            if pid == 0:
                break
            reaped.append((pid, status))
        return reaped


__all__ = ["SubprocessLauncher", "WorkerLauncher", "WorkerProcess"]
