"""
Base Snapshot Backend
~~~~~~~~~~~~~~~~~~~~~

Abstract base class for snapshot backends that capture the container's
state before a sync and restore it on request.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime

from config_manager.core.commands import CommandResult, CommandRunner
from config_manager.core.models import RollbackResult, SnapshotInfo
from config_manager.exceptions import SnapshotNotFoundError

__all__ = [
    "SNAPSHOT_PREFIX",
    "TIMESTAMP_FORMAT",
    "SnapshotBackend",
    "make_snapshot_name",
    "parse_snapshot_time",
    "is_managed_name",
]

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "config-manager"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def make_snapshot_name(now: datetime, prefix: str = SNAPSHOT_PREFIX) -> str:
    """``<prefix>-YYYYmmdd-HHMMSS`` in local time."""
    return f"{prefix}-{now.strftime(TIMESTAMP_FORMAT)}"


def is_managed_name(name: str, prefix: str = SNAPSHOT_PREFIX) -> bool:
    return name.startswith(f"{prefix}-") and parse_snapshot_time(name, prefix) is not None


def parse_snapshot_time(name: str, prefix: str = SNAPSHOT_PREFIX) -> datetime | None:
    """Recover the local creation time embedded in a snapshot name."""
    stamp = name.removeprefix(f"{prefix}-")
    if stamp == name:
        return None
    try:
        return datetime.strptime(stamp, TIMESTAMP_FORMAT).astimezone()
    except ValueError:
        return None


class SnapshotBackend(ABC):
    """
    Abstract base class for snapshot backends.

    Each backend is responsible for:
    1. Deciding whether it can work on this host (detect)
    2. Creating, listing and deleting named snapshots
    3. Rolling back to a snapshot and reporting what that achieved

    Backends raise SnapshotError subclasses; the SnapshotManager decides
    which failures are fatal.
    """

    #: Name used in config (``SNAPSHOT_BACKEND``) and in listings.
    name: str = ""

    def __init__(self, runner: CommandRunner | None = None) -> None:
        self._runner = runner or CommandRunner()

    def _run(self, *args: str) -> CommandResult:
        return self._runner.run(list(args))

    def _root_mount(self, column: str) -> str | None:
        """Read one ``findmnt`` column for the root filesystem."""
        if not self._runner.which("findmnt"):
            return None
        result = self._run("findmnt", "-n", "-o", column, "/")
        if not result.ok:
            return None
        return result.stdout.strip() or None

    @abstractmethod
    def detect(self) -> bool:
        """Return True if the root filesystem supports this backend."""
        ...

    @abstractmethod
    def create(self, name: str) -> None:
        """
        Create a snapshot.

        Raises:
            SnapshotError: If the snapshot could not be created.
        """
        ...

    @abstractmethod
    def list_snapshots(self) -> list[SnapshotInfo]:
        """Return managed snapshots, oldest first."""
        ...

    @abstractmethod
    def rollback(self, name: str) -> RollbackResult:
        """
        Roll back to a snapshot.

        Raises:
            SnapshotNotFoundError: If the snapshot does not exist.
            RollbackFailedError: If the rollback failed.
        """
        ...

    @abstractmethod
    def delete(self, name: str) -> None:
        """
        Remove a snapshot.

        Raises:
            SnapshotError: If removal failed.
        """
        ...

    def show(self, name: str) -> list[str]:
        """
        Describe a snapshot, one line per entry.

        Raises:
            SnapshotNotFoundError: If the snapshot does not exist.
        """
        self.require(name)
        return [f"Snapshot {name} ({self.name})"]

    def tag_good(self, name: str) -> None:
        """Record a verified checkpoint on the backend itself, if supported."""

    def exists(self, name: str) -> bool:
        return any(s.name == name for s in self.list_snapshots())

    def require(self, name: str) -> None:
        if not self.exists(name):
            raise SnapshotNotFoundError(
                f"{self.name} snapshot not found: {name}",
                details={"backend": self.name, "snapshot": name},
            )
