"""
LVM Snapshot Backend
~~~~~~~~~~~~~~~~~~~~

Snapshot logical volumes of the root LV. Rollback schedules a merge
that completes the next time the origin volume is activated, so the
result is ``scheduled`` rather than ``restored``.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime

from config_manager.core.commands import CommandRunner
from config_manager.core.models import RollbackResult, RollbackStatus, SnapshotInfo
from config_manager.exceptions import RollbackFailedError, SnapshotError
from config_manager.rollback.backends.base import (
    SnapshotBackend,
    is_managed_name,
    parse_snapshot_time,
)

__all__ = ["LvmBackend"]

logger = logging.getLogger(__name__)


def _parse_lv_time(raw: str) -> datetime | None:
    raw = raw.strip()
    for fmt in ("%Y-%m-%d %H:%M:%S %z", "%Y-%m-%d %H:%M:%S"):
        try:
            parsed = datetime.strptime(raw, fmt)
        except ValueError:
            continue
        return parsed if parsed.tzinfo else parsed.astimezone()
    return None


class LvmBackend(SnapshotBackend):
    """Snapshots of ``/dev/<vg>/<lv>`` backing ``/``."""

    name = "lvm"

    def __init__(self, runner: CommandRunner | None = None, size: str = "1G") -> None:
        super().__init__(runner)
        self.size = size
        self.vg: str | None = None
        self.lv: str | None = None

    def detect(self) -> bool:
        if not self._runner.which("lvs"):
            return False
        device = self._root_mount("SOURCE")
        if not device:
            return False
        if os.path.islink(device):
            device = os.path.realpath(device)
        result = self._run(
            "lvs", "--noheadings", "-o", "vg_name,lv_name", "--separator", "/", device
        )
        info = "".join(result.stdout.split()) if result.ok else ""
        vg, sep, lv = info.partition("/")
        if not (sep and vg and lv):
            return False
        self.vg, self.lv = vg, lv
        return True

    def _volume(self) -> tuple[str, str]:
        if self.vg is None and not self.detect():
            raise SnapshotError("Root filesystem is not on LVM")
        assert self.vg is not None and self.lv is not None
        return self.vg, self.lv

    def create(self, name: str) -> None:
        vg, lv = self._volume()
        origin = f"/dev/{vg}/{lv}"
        logger.info("Creating LVM snapshot %s of %s (size %s)", name, origin, self.size)
        result = self._run(
            "lvcreate", "--snapshot", "--size", self.size, "--name", name, origin
        )
        if not result.ok:
            raise SnapshotError(f"Failed to create LVM snapshot {name}: {result.output.strip()}")

    def list_snapshots(self) -> list[SnapshotInfo]:
        vg, _ = self._volume()
        result = self._run(
            "lvs", "--noheadings", "--separator", "|", "-o", "lv_name,lv_time", vg
        )
        if not result.ok:
            logger.warning("Could not list LVM snapshots: %s", result.output.strip())
            return []
        snapshots = []
        for line in result.stdout.splitlines():
            lv_name, _, lv_time = line.strip().partition("|")
            if not is_managed_name(lv_name):
                continue
            created = _parse_lv_time(lv_time) or parse_snapshot_time(lv_name)
            if created is None:
                continue
            snapshots.append(SnapshotInfo(name=lv_name, backend=self.name, created=created))
        snapshots.sort(key=lambda s: s.created)
        return snapshots

    def exists(self, name: str) -> bool:
        vg, _ = self._volume()
        return self._run("lvs", f"/dev/{vg}/{name}").ok

    def rollback(self, name: str) -> RollbackResult:
        self.require(name)
        vg, _ = self._volume()
        path = f"/dev/{vg}/{name}"
        logger.warning("Merging LVM snapshot %s; completes on next activation", path)
        result = self._run("lvconvert", "--merge", path)
        if not result.ok:
            raise RollbackFailedError(f"LVM merge failed: {result.output.strip()}")
        return RollbackResult(
            snapshot=name,
            status=RollbackStatus.SCHEDULED,
            message=f"LVM merge scheduled for {path}",
            steps=["Reboot (or reactivate the logical volume) to complete the merge"],
        )

    def delete(self, name: str) -> None:
        vg, _ = self._volume()
        result = self._run("lvremove", "-f", f"/dev/{vg}/{name}")
        if not result.ok:
            raise SnapshotError(f"Failed to remove LVM snapshot {name}: {result.output.strip()}")

    def show(self, name: str) -> list[str]:
        self.require(name)
        return [
            "LVM snapshot diff is not supported (snapshots are block-level).",
            f"Use 'config-rollback restore {name}' to restore.",
        ]
