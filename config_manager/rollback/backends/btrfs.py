"""
BTRFS Snapshot Backend
~~~~~~~~~~~~~~~~~~~~~~

Read-only subvolume snapshots of ``/`` under ``/.snapshots``. A running
system cannot swap its own root subvolume, so rollback only prepares a
writable ``<name>-restore`` copy and reports the manual recovery steps.
Restore copies are not managed snapshots; retention never prunes them.
"""

from __future__ import annotations

import logging
import os

from config_manager.core.commands import CommandRunner
from config_manager.core.models import RollbackResult, RollbackStatus, SnapshotInfo
from config_manager.core.state import StateStore
from config_manager.core.triplets import file_digest
from config_manager.exceptions import RollbackFailedError, SnapshotError
from config_manager.rollback.backends.base import (
    SnapshotBackend,
    is_managed_name,
    parse_snapshot_time,
)

__all__ = ["BtrfsBackend", "MANUAL_STEPS"]

logger = logging.getLogger(__name__)

MANUAL_STEPS = [
    "Boot into a recovery environment (live USB/CD)",
    "Mount the BTRFS filesystem",
    "Move the current root subvolume aside",
    "Move the restore snapshot to the root subvolume location",
    "Reboot and verify system state",
]


class BtrfsBackend(SnapshotBackend):
    """Subvolume snapshots of the root filesystem."""

    name = "btrfs"

    def __init__(
        self,
        runner: CommandRunner | None = None,
        snap_dir: str = "/.snapshots",
        store: StateStore | None = None,
    ) -> None:
        super().__init__(runner)
        self.snap_dir = snap_dir
        self._store = store

    def _path(self, name: str) -> str:
        return os.path.join(self.snap_dir, name)

    def detect(self) -> bool:
        if not self._runner.which("btrfs"):
            return False
        return self._root_mount("FSTYPE") == "btrfs"

    def create(self, name: str) -> None:
        try:
            os.makedirs(self.snap_dir, exist_ok=True)
        except OSError as exc:
            raise SnapshotError(
                f"Cannot create snapshot directory {self.snap_dir}: {exc}"
            ) from exc
        path = self._path(name)
        logger.info("Creating BTRFS snapshot: %s", path)
        result = self._run("btrfs", "subvolume", "snapshot", "-r", "/", path)
        if not result.ok:
            raise SnapshotError(f"Failed to create BTRFS snapshot {path}: {result.output.strip()}")

    def list_snapshots(self) -> list[SnapshotInfo]:
        try:
            entries = sorted(os.listdir(self.snap_dir))
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise SnapshotError(
                f"Cannot read snapshot directory {self.snap_dir}: {exc}"
            ) from exc
        snapshots = []
        for entry in entries:
            if not is_managed_name(entry) or not os.path.isdir(self._path(entry)):
                continue
            created = parse_snapshot_time(entry)
            assert created is not None
            snapshots.append(SnapshotInfo(name=entry, backend=self.name, created=created))
        snapshots.sort(key=lambda s: s.created)
        return snapshots

    def exists(self, name: str) -> bool:
        return os.path.isdir(self._path(name))

    def rollback(self, name: str) -> RollbackResult:
        self.require(name)
        restore_path = self._path(f"{name}-restore")
        result = self._run("btrfs", "subvolume", "snapshot", self._path(name), restore_path)
        if not result.ok:
            raise RollbackFailedError(
                f"BTRFS rollback failed: could not create restore snapshot: "
                f"{result.output.strip()}"
            )
        logger.warning("BTRFS rollback requires manual steps; restore copy at %s", restore_path)
        return RollbackResult(
            snapshot=name,
            status=RollbackStatus.MANUAL,
            message=f"Writable restore snapshot created at {restore_path}",
            steps=[
                *MANUAL_STEPS,
                f"If the restore copy goes unused, delete it with: "
                f"btrfs subvolume delete {restore_path}",
            ],
        )

    def delete(self, name: str) -> None:
        result = self._run("btrfs", "subvolume", "delete", self._path(name))
        if not result.ok:
            raise SnapshotError(f"Failed to remove BTRFS snapshot {name}: {result.output.strip()}")

    def show(self, name: str) -> list[str]:
        self.require(name)
        tracked = self._store.load_managed_files() if self._store else []
        if not tracked:
            return ["No tracked files recorded; nothing to compare."]
        lines = [f"Tracked files compared with BTRFS snapshot {name}:"]
        root = self._path(name)
        for target in sorted(tracked):
            then = file_digest(os.path.join(root, target.lstrip("/")))
            now = file_digest(target)
            if then is None:
                status = "new"
            elif now is None:
                status = "deleted"
            elif then == now:
                status = "unchanged"
            else:
                status = "modified"
            lines.append(f"  [{status:<9}] {target}")
        return lines
