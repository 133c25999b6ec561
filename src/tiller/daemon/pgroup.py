"""Process group management for worker shutdown.

After detachment the supervisor is a session and process group leader, and
every worker (plus anything a worker starts) inherits that group. On
shutdown a single ``os.killpg()`` therefore reaches the whole pool,
including grandchildren the supervisor never tracked.

Lifecycle:
    1. setup(): become (or confirm being) the group leader
    2. kill_all_children(): shutdown: signal the entire group
    3. atexit handler: last-resort signal if the normal path is skipped
"""

from __future__ import annotations

import atexit
import os
import signal

import psutil

from tiller.core.logging import get_logger

_logger = get_logger("daemon.pgroup")


class ProcessGroupManager:
    """Manages the supervisor's process group so no worker outlives it."""

    def __init__(self) -> None:
        self._is_leader: bool = False
        self._atexit_registered: bool = False

    @property
    def is_leader(self) -> bool:
        """Whether the supervisor is the process group leader."""
        return self._is_leader

    def setup(self) -> None:
        """Become the process group leader. Idempotent.

        Must run before the first worker is spawned. After ``setsid()`` the
        process already leads its group, which ``setpgrp()`` reports as
        ``EPERM``; that case is recognized and accepted.
        """
        if self._is_leader:
            return

        try:
            os.setpgrp()
            self._is_leader = True
            _logger.info("pgroup.setup_complete", pid=os.getpid(), pgid=os.getpgrp())
        except OSError as exc:
            if os.getpid() == os.getpgrp():
                self._is_leader = True
                _logger.debug("pgroup.already_leader", pid=os.getpid())
            else:
                _logger.warning("pgroup.setup_failed", error=str(exc), pid=os.getpid())

        if self._is_leader and not self._atexit_registered:
            atexit.register(self._atexit_cleanup)
            self._atexit_registered = True

    def count_children(self) -> int:
        """Number of live descendants of this process."""
        try:
            children = psutil.Process(os.getpid()).children(recursive=True)
        except psutil.Error:
            return 0
        return sum(1 for child in children if _is_running(child))

    def kill_all_children(self, sig: int = signal.SIGTERM) -> int:
        """Send ``sig`` to every process in our group except ourselves.

        Returns:
            Number of descendants that were alive when signalled, 0 if no
            signal was sent.
        """
        if not self._is_leader:
            _logger.debug("pgroup.not_leader_skip_kill")
            return 0

        child_count = self.count_children()
        if child_count == 0:
            _logger.debug("pgroup.no_children_to_signal")
            return 0

        pgid = os.getpgrp()
        try:
            # Ignore the signal ourselves so killpg doesn't take us down too.
            old_handler = signal.signal(sig, signal.SIG_IGN)
            try:
                os.killpg(pgid, sig)
            finally:
                signal.signal(sig, old_handler)
        except ProcessLookupError:
            _logger.debug("pgroup.no_processes_in_group", pgid=pgid)
            return 0
        except PermissionError:
            _logger.warning("pgroup.permission_denied", pgid=pgid)
            return 0

        _logger.info(
            "pgroup.signaled_children",
            signal=signal.Signals(sig).name,
            pgid=pgid,
            child_count=child_count,
        )
        return child_count

    def _atexit_cleanup(self) -> None:
        """Last-resort SIGTERM to the group; atexit handlers must not raise."""
        if not self._is_leader:
            return
        try:
            self.kill_all_children(signal.SIGTERM)
        except Exception:  # noqa: BLE001
            pass


def _is_running(proc: psutil.Process) -> bool:
    try:
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except psutil.Error:
        return False


__all__ = ["ProcessGroupManager"]
