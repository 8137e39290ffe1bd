"""
File-Level Snapshot Backend
~~~~~~~~~~~~~~~~~~~~~~~~~~~

Fallback used when the root filesystem has no snapshot support. Copies
only the managed files plus the agent's restorable state into
``<state_dir>/backups/<name>/``::

    MANIFEST     one entry per line: ``state/`` or ``files/<relpath>``
    METADATA     key=value: snapshot_name, created, created_epoch, ...
    STATUS       ``good`` once the sync that took it succeeded
    state/       exported agent state
    files/       copies of managed files, laid out by absolute path

Rollback replays the manifest.
"""

from __future__ import annotations

import difflib
import json
import logging
import os
import shutil
from collections.abc import Callable
from datetime import UTC, datetime

from config_manager.core.models import RollbackResult, RollbackStatus, SnapshotInfo
from config_manager.core.state import StateStore
from config_manager.core.triplets import file_digest
from config_manager.exceptions import (
    RollbackFailedError,
    SnapshotError,
    SnapshotNotFoundError,
)
from config_manager.rollback.backends.base import (
    SnapshotBackend,
    is_managed_name,
    parse_snapshot_time,
)

__all__ = ["FileBackend"]

logger = logging.getLogger(__name__)

_STATE_ENTRY = "state/"
_STATE_FILE = os.path.join("state", "state.json")
_DIFF_LINES = 20


def _read_kv(path: str) -> dict[str, str]:
    values: dict[str, str] = {}
    try:
        with open(path, encoding="utf-8") as f:
            for line in f:
                key, sep, value = line.rstrip("\n").partition("=")
                if sep:
                    values[key] = value
    except FileNotFoundError:
        pass
    return values


class FileBackend(SnapshotBackend):
    """Copies of managed files and agent state; always available."""

    name = "file"

    def __init__(
        self,
        store: StateStore,
        backups_dir: str,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(None)
        self._store = store
        self.backups_dir = backups_dir
        self._clock = clock or (lambda: datetime.now().astimezone())

    def _path(self, name: str, *parts: str) -> str:
        return os.path.join(self.backups_dir, name, *parts)

    def detect(self) -> bool:
        return True

    # ── Create ───────────────────────────────────────────────────

    def create(self, name: str) -> None:
        backup = self._path(name)
        logger.info("Creating file-level backup: %s", backup)
        try:
            os.makedirs(backup, exist_ok=False)
            manifest = self._write_contents(backup)
            now = self._clock()
            with open(self._path(name, "MANIFEST"), "w", encoding="utf-8") as f:
                f.writelines(f"{entry}\n" for entry in manifest)
            with open(self._path(name, "METADATA"), "w", encoding="utf-8") as f:
                f.write(
                    f"snapshot_name={name}\n"
                    f"created={now.strftime('%Y-%m-%d %H:%M:%S')}\n"
                    f"created_epoch={int(now.timestamp())}\n"
                    f"backend=file-backup\n"
                    f"file_count={len(manifest)}\n"
                )
        except OSError as exc:
            raise SnapshotError(f"Failed to create file-level backup {name}: {exc}") from exc
        logger.info("File-level backup created: %s (%d entries)", backup, len(manifest))

    def _write_contents(self, backup: str) -> list[str]:
        manifest = []
        os.makedirs(os.path.join(backup, "state"))
        with open(os.path.join(backup, _STATE_FILE), "w", encoding="utf-8") as f:
            json.dump(self._store.export_state(), f, indent=2)
        manifest.append(_STATE_ENTRY)

        for target in self._store.load_managed_files():
            if not os.path.isfile(target):
                continue
            relative = target.lstrip("/")
            dest = os.path.join(backup, "files", relative)
            try:
                os.makedirs(os.path.dirname(dest), exist_ok=True)
                shutil.copy2(target, dest)
            except OSError as exc:
                logger.warning("Failed to back up %s: %s", target, exc)
                continue
            manifest.append(f"files/{relative}")
        return manifest

    # ── List / delete / tag ──────────────────────────────────────

    def list_snapshots(self) -> list[SnapshotInfo]:
        try:
            entries = sorted(os.listdir(self.backups_dir))
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise SnapshotError(f"Cannot read backups directory {self.backups_dir}: {exc}") from exc
        snapshots = []
        for entry in entries:
            if not is_managed_name(entry) or not os.path.isdir(self._path(entry)):
                continue
            meta = _read_kv(self._path(entry, "METADATA"))
            created = None
            if meta.get("created_epoch", "").isdigit():
                created = datetime.fromtimestamp(int(meta["created_epoch"]), UTC)
            if created is None:
                created = parse_snapshot_time(entry)
            assert created is not None
            snapshots.append(
                SnapshotInfo(
                    name=entry,
                    backend=self.name,
                    created=created,
                    good=self._is_good(entry),
                )
            )
        snapshots.sort(key=lambda s: s.created)
        return snapshots

    def _is_good(self, name: str) -> bool:
        try:
            with open(self._path(name, "STATUS"), encoding="utf-8") as f:
                return f.read().strip() == "good"
        except OSError:
            return False

    def exists(self, name: str) -> bool:
        return os.path.isdir(self._path(name))

    def delete(self, name: str) -> None:
        try:
            shutil.rmtree(self._path(name))
        except OSError as exc:
            raise SnapshotError(f"Failed to remove backup {name}: {exc}") from exc

    def tag_good(self, name: str) -> None:
        if not self.exists(name):
            return
        try:
            with open(self._path(name, "STATUS"), "w", encoding="utf-8") as f:
                f.write("good\n")
        except OSError as exc:
            raise SnapshotError(f"Failed to tag backup {name} as good: {exc}") from exc

    # ── Rollback ─────────────────────────────────────────────────

    def _manifest(self, name: str) -> list[str]:
        self.require(name)
        try:
            with open(self._path(name, "MANIFEST"), encoding="utf-8") as f:
                return [line.strip() for line in f if line.strip()]
        except FileNotFoundError as exc:
            raise RollbackFailedError(
                f"Backup manifest missing: {self._path(name, 'MANIFEST')}"
            ) from exc

    def rollback(self, name: str) -> RollbackResult:
        entries = self._manifest(name)
        logger.warning("Restoring from file-level backup: %s", self._path(name))
        restored, failed = 0, []

        for entry in entries:
            if entry == _STATE_ENTRY:
                try:
                    with open(self._path(name, _STATE_FILE), encoding="utf-8") as f:
                        self._store.import_state(json.load(f))
                except (OSError, ValueError) as exc:
                    logger.warning("Failed to restore agent state: %s", exc)
                    failed.append("state")
                    continue
                logger.info("Restored: config-manager state")
                restored += 1
            elif entry.startswith("files/"):
                relative = entry.removeprefix("files/")
                source = self._path(name, entry)
                target = "/" + relative
                try:
                    os.makedirs(os.path.dirname(target), exist_ok=True)
                    shutil.copy2(source, target)
                except OSError as exc:
                    logger.warning("Failed to restore %s: %s", target, exc)
                    failed.append(target)
                    continue
                logger.info("Restored: %s", target)
                restored += 1

        logger.info("File-level restore complete: restored %d, failed %d", restored, len(failed))
        if failed:
            raise RollbackFailedError(
                f"Restore of {name} incomplete; failed: {', '.join(failed)}",
                details={"failed": failed, "restored": restored},
            )
        return RollbackResult(
            snapshot=name,
            status=RollbackStatus.RESTORED,
            message=f"Restored {restored} entr{'y' if restored == 1 else 'ies'}",
        )

    # ── Show ─────────────────────────────────────────────────────

    def show(self, name: str) -> list[str]:
        if not self.exists(name):
            raise SnapshotNotFoundError(f"Backup not found: {self._path(name)}")
        lines = ["Metadata:"]
        for key, value in _read_kv(self._path(name, "METADATA")).items():
            lines.append(f"  {key + ':':<20} {value}")
        if self._is_good(name):
            lines.append(f"  {'status:':<20} good")

        try:
            entries = self._manifest(name)
        except RollbackFailedError:
            lines.append("(no manifest; cannot show file details)")
            return lines

        lines.append("Backed up files:")
        for entry in entries:
            if entry == _STATE_ENTRY:
                lines.append("  [state]     config-manager state")
                continue
            target = "/" + entry.removeprefix("files/")
            backup = self._path(name, entry)
            now = file_digest(target)
            if now is None:
                lines.append(f"  [deleted]   {target}")
            elif now == file_digest(backup):
                lines.append(f"  [unchanged] {target}")
            else:
                lines.append(f"  [modified]  {target}")
                lines.extend(f"      {d}" for d in self._diff(backup, target))
        return lines

    def _diff(self, old: str, new: str) -> list[str]:
        try:
            with open(old, encoding="utf-8", errors="replace") as f:
                before = f.readlines()
            with open(new, encoding="utf-8", errors="replace") as f:
                after = f.readlines()
        except OSError:
            return []
        diff = difflib.unified_diff(before, after, fromfile=old, tofile=new)
        return [line.rstrip("\n") for line in diff][:_DIFF_LINES]
