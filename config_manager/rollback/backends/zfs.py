"""
ZFS Snapshot Backend
~~~~~~~~~~~~~~~~~~~~

Copy-on-write snapshots of the dataset mounted at ``/``. Rollback is
immediate (``zfs rollback -r``).
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from config_manager.core.commands import CommandRunner
from config_manager.core.models import RollbackResult, RollbackStatus, SnapshotInfo
from config_manager.exceptions import RollbackFailedError, SnapshotError
from config_manager.rollback.backends.base import SnapshotBackend, is_managed_name

__all__ = ["ZfsBackend"]

logger = logging.getLogger(__name__)

_SHOW_LIMIT = 50


class ZfsBackend(SnapshotBackend):
    """Snapshots ``<dataset>@<name>`` of the root dataset."""

    name = "zfs"

    def __init__(self, runner: CommandRunner | None = None) -> None:
        super().__init__(runner)
        self.dataset: str | None = None

    def detect(self) -> bool:
        if not self._runner.which("zfs"):
            return False
        source = self._root_mount("SOURCE")
        if source and self._run("zfs", "list", "-H", "-o", "name", source).ok:
            self.dataset = source
            return True
        # Root may be a dataset whose SOURCE findmnt reports differently.
        result = self._run("zfs", "list", "-H", "-o", "name,mountpoint")
        if result.ok:
            for line in result.stdout.splitlines():
                parts = line.split("\t")
                if len(parts) == 2 and parts[1] == "/":
                    self.dataset = parts[0]
                    return True
        return False

    def _dataset(self) -> str:
        if self.dataset is None and not self.detect():
            raise SnapshotError("Root filesystem is not on ZFS")
        assert self.dataset is not None
        return self.dataset

    def create(self, name: str) -> None:
        snap = f"{self._dataset()}@{name}"
        logger.info("Creating ZFS snapshot: %s", snap)
        result = self._run("zfs", "snapshot", snap)
        if not result.ok:
            raise SnapshotError(f"Failed to create ZFS snapshot {snap}: {result.output.strip()}")

    def list_snapshots(self) -> list[SnapshotInfo]:
        dataset = self._dataset()
        result = self._run(
            "zfs", "list", "-t", "snapshot", "-Hp", "-o", "name,creation", "-s", "creation"
        )
        if not result.ok:
            logger.warning("Could not list ZFS snapshots: %s", result.output.strip())
            return []
        snapshots = []
        for line in result.stdout.splitlines():
            full, _, creation = line.partition("\t")
            ds, _, snap = full.partition("@")
            if ds != dataset or not is_managed_name(snap):
                continue
            try:
                created = datetime.fromtimestamp(int(creation.strip()), UTC)
            except ValueError:
                continue
            snapshots.append(SnapshotInfo(name=snap, backend=self.name, created=created))
        return snapshots

    def exists(self, name: str) -> bool:
        return self._run("zfs", "list", "-t", "snapshot", f"{self._dataset()}@{name}").ok

    def rollback(self, name: str) -> RollbackResult:
        self.require(name)
        snap = f"{self._dataset()}@{name}"
        logger.warning("Rolling back ZFS to %s; later changes are discarded", snap)
        result = self._run("zfs", "rollback", "-r", snap)
        if not result.ok:
            raise RollbackFailedError(f"ZFS rollback failed: {result.output.strip()}")
        return RollbackResult(
            snapshot=name,
            status=RollbackStatus.RESTORED,
            message=f"ZFS rollback complete: {snap}",
        )

    def delete(self, name: str) -> None:
        snap = f"{self._dataset()}@{name}"
        result = self._run("zfs", "destroy", snap)
        if not result.ok:
            raise SnapshotError(f"Failed to remove ZFS snapshot {snap}: {result.output.strip()}")

    def show(self, name: str) -> list[str]:
        self.require(name)
        snap = f"{self._dataset()}@{name}"
        result = self._run("zfs", "diff", snap)
        if not result.ok:
            return [f"Could not show ZFS diff for {snap} (may require dataset mount)"]
        lines = result.stdout.splitlines()
        out = [f"Changes since ZFS snapshot {snap}:"]
        out.extend(f"  {line}" for line in lines[:_SHOW_LIMIT])
        if len(lines) > _SHOW_LIMIT:
            out.append(f"  ... {len(lines) - _SHOW_LIMIT} more")
        if not lines:
            out.append("  (no changes)")
        return out
