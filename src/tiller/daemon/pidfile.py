"""PID file helpers for the detached supervisor.

The PID file is written after detachment, so it names the long-lived
supervisor rather than the short-lived launching process. An advisory lock
is held on it for the supervisor's lifetime; a second supervisor that finds
the lock taken refuses to start.
"""

from __future__ import annotations

import fcntl
import os
from pathlib import Path

from tiller.daemon.exceptions import DaemonAlreadyRunningError

# Held for the supervisor's lifetime; released when the process exits.
_pid_lock_fd: int | None = None


def write_pid(pid_file: Path) -> None:
    """Write the current PID to ``pid_file`` and lock it.

    Raises:
        OSError: ``pid_file`` is a symlink.
        DaemonAlreadyRunningError: Another live process holds the lock.
    """
    global _pid_lock_fd

    pid_file.parent.mkdir(parents=True, exist_ok=True)
    if pid_file.is_symlink():
        raise OSError(f"PID file is a symlink: {pid_file}")

    # Lock before writing: replacing the file would hand a second
    # supervisor a fresh, unlocked inode.
    fd = os.open(str(pid_file), os.O_RDWR | os.O_CREAT | os.O_NOFOLLOW, 0o644)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError as exc:
        os.close(fd)
        raise DaemonAlreadyRunningError(
            f"Cannot lock PID file {pid_file}: {exc}. "
            "Another supervisor may be running."
        ) from exc

    os.ftruncate(fd, 0)
    os.write(fd, str(os.getpid()).encode())
    _pid_lock_fd = fd


def read_pid(pid_file: Path) -> int | None:
    """Read a PID from file, returning None if missing or invalid."""
    try:
        return int(pid_file.read_text().strip())
    except (FileNotFoundError, ValueError):
        return None


def pid_alive(pid: int) -> bool:
    """Check whether a process with the given PID is alive."""
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        return True  # exists, but owned by someone else


def remove_pid(pid_file: Path) -> None:
    """Remove ``pid_file`` if it still names this process, and drop the lock."""
    global _pid_lock_fd

    if read_pid(pid_file) == os.getpid():
        pid_file.unlink(missing_ok=True)
    if _pid_lock_fd is not None:
        os.close(_pid_lock_fd)
        _pid_lock_fd = None


__all__ = ["pid_alive", "read_pid", "remove_pid", "write_pid"]
