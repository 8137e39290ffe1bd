"""
Sync Lock
~~~~~~~~~

PID-keyed mutual exclusion: at most one sync per container. A second
invocation fails fast instead of queueing; a lock left behind by a dead
process is reclaimed.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable

from config_manager.core.state import StateStore
from config_manager.exceptions import LockHeldError

__all__ = ["SyncLock", "pid_alive"]

logger = logging.getLogger(__name__)


def pid_alive(pid: int) -> bool:
    """Return True if a process with ``pid`` exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else.
        return True
    return True


class SyncLock:
    """
    Exclusive run lock, usable as a context manager.

    Usage::

        with SyncLock(store):
            ...  # only one sync gets here
    """

    def __init__(
        self,
        store: StateStore,
        pid: int | None = None,
        is_alive: Callable[[int], bool] = pid_alive,
        lock_path: str = "",
    ) -> None:
        self._store = store
        self._pid = pid if pid is not None else os.getpid()
        self._is_alive = is_alive
        self._lock_path = lock_path or getattr(store, "lock_file", "")
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        """
        Take the lock.

        Raises:
            LockHeldError: If a live process already holds it.
        """
        # Two attempts: the second follows reclaiming a stale lock.
        for _ in range(2):
            if self._store.try_write_lock(self._pid):
                self._held = True
                logger.debug("Acquired sync lock (PID %d)", self._pid)
                return
            holder = self._store.read_lock_pid()
            if holder is None:
                continue
            if holder != self._pid and self._is_alive(holder):
                raise LockHeldError(
                    "Another sync is already running",
                    pid=holder,
                    lock_path=self._lock_path,
                )
            logger.warning("Removing stale lock (PID %d is not running)", holder)
            self._store.clear_lock()
        raise LockHeldError(
            "Could not acquire sync lock",
            pid=self._store.read_lock_pid() or 0,
            lock_path=self._lock_path,
        )

    def release(self) -> None:
        """Release the lock if this instance holds it."""
        if not self._held:
            return
        holder = self._store.read_lock_pid()
        if holder in (None, self._pid):
            self._store.clear_lock()
        else:
            logger.warning("Lock now owned by PID %s; leaving it in place", holder)
        self._held = False
        logger.debug("Released sync lock")

    def __enter__(self) -> SyncLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
