"""
Persisted Agent State
~~~~~~~~~~~~~~~~~~~~~

All state the agent keeps between runs goes through a ``StateStore``:
the PID lock, the checksum tables, the conflict marker and log, the
snapshot pointer, the last-sync marker and the managed-files list.

``FileStateStore`` keeps it under the state directory on the host;
``MemoryStateStore`` keeps it in dicts for tests.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod

from config_manager.core.models import ChecksumRecord, Conflict, ConflictMarker

__all__ = [
    "BASELINE",
    "CURRENT",
    "StateStore",
    "FileStateStore",
    "MemoryStateStore",
]

logger = logging.getLogger(__name__)

# Checksum table generations.
BASELINE = "prev"
CURRENT = "current"

_GENERATIONS = (BASELINE, CURRENT)


def _check_generation(generation: str) -> None:
    if generation not in _GENERATIONS:
        raise ValueError(f"Unknown checksum generation: {generation!r}")


class StateStore(ABC):
    """Interface over the agent's persisted state."""

    # ── Lock ─────────────────────────────────────────────────────

    @abstractmethod
    def read_lock_pid(self) -> int | None:
        """Return the PID recorded in the lock, or None if unlocked."""
        ...

    @abstractmethod
    def try_write_lock(self, pid: int) -> bool:
        """Create the lock for ``pid``; False if a lock already exists."""
        ...

    @abstractmethod
    def clear_lock(self) -> None: ...

    # ── Checksums ────────────────────────────────────────────────

    @abstractmethod
    def load_checksums(self, generation: str) -> dict[str, ChecksumRecord]: ...

    @abstractmethod
    def save_checksums(
        self, generation: str, records: dict[str, ChecksumRecord]
    ) -> None: ...

    @abstractmethod
    def clear_checksums(self, generation: str) -> None: ...

    # ── Conflicts ────────────────────────────────────────────────

    @abstractmethod
    def read_conflict_marker(self) -> ConflictMarker | None: ...

    @abstractmethod
    def write_conflict_marker(self, marker: ConflictMarker) -> None: ...

    @abstractmethod
    def clear_conflict_marker(self) -> None: ...

    @abstractmethod
    def write_conflict_log(self, conflicts: list[Conflict]) -> str:
        """Persist the conflict log and return where it lives."""
        ...

    @abstractmethod
    def read_conflict_log(self) -> list[Conflict]: ...

    @abstractmethod
    def archive_conflict_log(self, suffix: str) -> str | None:
        """Move the conflict log aside; return its new location if any."""
        ...

    # ── Snapshots, sync marker, managed files ────────────────────

    @abstractmethod
    def read_snapshot_pointer(self) -> tuple[str, bool] | None:
        """Return ``(name, good)`` of the last snapshot, if any."""
        ...

    @abstractmethod
    def write_snapshot_pointer(self, name: str, good: bool = False) -> None: ...

    @abstractmethod
    def read_last_sync(self) -> str | None: ...

    @abstractmethod
    def write_last_sync(self, timestamp: str) -> None: ...

    @abstractmethod
    def load_managed_files(self) -> list[str]: ...

    @abstractmethod
    def save_managed_files(self, paths: list[str]) -> None: ...

    # ── Backup support ───────────────────────────────────────────

    @abstractmethod
    def export_state(self) -> dict[str, str]:
        """Serialize restorable state (checksums, managed files, last sync)."""
        ...

    @abstractmethod
    def import_state(self, data: dict[str, str]) -> None:
        """Replace restorable state with a previous ``export_state()``."""
        ...

    def is_first_run(self) -> bool:
        return self.read_last_sync() is None


# ── Serialization helpers ────────────────────────────────────────────────────


def _records_to_json(records: dict[str, ChecksumRecord]) -> str:
    data = {path: rec.to_dict() for path, rec in sorted(records.items())}
    return json.dumps(data, indent=2, sort_keys=True)


def _records_from_json(text: str) -> dict[str, ChecksumRecord]:
    data = json.loads(text) if text.strip() else {}
    return {path: ChecksumRecord.from_dict(path, rec) for path, rec in data.items()}


def _conflicts_from_json(text: str) -> list[Conflict]:
    data = json.loads(text) if text.strip() else {}
    return [
        Conflict(
            path=item["path"],
            local=item.get("local"),
            expected=item.get("expected"),
            incoming=item.get("incoming"),
        )
        for item in data.get("conflicts", [])
    ]


def _marker_to_text(marker: ConflictMarker) -> str:
    return (
        f"conflict_detected={marker.detected_at}\n"
        f"conflict_count={marker.count}\n"
        f"conflicts_log={marker.log_path}\n"
    )


def _marker_from_text(text: str) -> ConflictMarker:
    values: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value.strip()
    try:
        count = int(values.get("conflict_count", "0"))
    except ValueError:
        count = 0
    return ConflictMarker(
        detected_at=values.get("conflict_detected", ""),
        count=count,
        log_path=values.get("conflicts_log", ""),
    )


def _pointer_from_text(text: str) -> tuple[str, bool] | None:
    text = text.strip()
    if not text:
        return None
    name, _, tag = text.partition(":")
    return name, tag == "good"


# ── File-backed store ────────────────────────────────────────────────────────


class FileStateStore(StateStore):
    """
    State kept as small files under ``state_dir``.

    Layout::

        state_dir/
            state/checksums.prev.json
            state/checksums.current.json
            state/managed-files.json
            CONFLICT              key=value conflict marker
            conflicts.json        structured conflict log
            snapshot-state        ``<name>`` or ``<name>:good``
            last-sync             ISO-8601 timestamp of the last success

    The lock file usually lives on a tmpfs (``/run``) so a reboot clears it.
    """

    _EXPORTED = ("state/checksums.prev.json", "state/managed-files.json", "last-sync")

    def __init__(self, state_dir: str, lock_file: str) -> None:
        self.state_dir = state_dir
        self.lock_file = lock_file

    def _path(self, name: str) -> str:
        return os.path.join(self.state_dir, name)

    def _read(self, name: str) -> str | None:
        try:
            with open(self._path(name), encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def _write(self, name: str, text: str) -> None:
        path = self._path(name)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tmp = f"{path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)

    def _remove(self, name: str) -> None:
        try:
            os.remove(self._path(name))
        except FileNotFoundError:
            pass

    # Lock

    def read_lock_pid(self) -> int | None:
        try:
            with open(self.lock_file, encoding="utf-8") as f:
                raw = f.read().strip()
        except FileNotFoundError:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning("Lock file %s holds garbage: %r", self.lock_file, raw)
            return 0

    def try_write_lock(self, pid: int) -> bool:
        lock_dir = os.path.dirname(self.lock_file)
        if lock_dir:
            os.makedirs(lock_dir, exist_ok=True)
        try:
            fd = os.open(self.lock_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as f:
            f.write(f"{pid}\n")
        return True

    def clear_lock(self) -> None:
        try:
            os.remove(self.lock_file)
        except FileNotFoundError:
            pass

    # Checksums

    def load_checksums(self, generation: str) -> dict[str, ChecksumRecord]:
        _check_generation(generation)
        text = self._read(f"state/checksums.{generation}.json")
        if text is None:
            return {}
        try:
            return _records_from_json(text)
        except (ValueError, KeyError, AttributeError) as exc:
            logger.warning("Discarding corrupt %s checksum table: %s", generation, exc)
            return {}

    def save_checksums(
        self, generation: str, records: dict[str, ChecksumRecord]
    ) -> None:
        _check_generation(generation)
        self._write(f"state/checksums.{generation}.json", _records_to_json(records))

    def clear_checksums(self, generation: str) -> None:
        _check_generation(generation)
        self._remove(f"state/checksums.{generation}.json")

    # Conflicts

    def read_conflict_marker(self) -> ConflictMarker | None:
        text = self._read("CONFLICT")
        if text is None:
            return None
        return _marker_from_text(text)

    def write_conflict_marker(self, marker: ConflictMarker) -> None:
        self._write("CONFLICT", _marker_to_text(marker))

    def clear_conflict_marker(self) -> None:
        self._remove("CONFLICT")

    def write_conflict_log(self, conflicts: list[Conflict]) -> str:
        data = {"conflicts": [c.to_dict() for c in conflicts]}
        self._write("conflicts.json", json.dumps(data, indent=2))
        return self._path("conflicts.json")

    def read_conflict_log(self) -> list[Conflict]:
        text = self._read("conflicts.json")
        if text is None:
            return []
        try:
            return _conflicts_from_json(text)
        except (ValueError, KeyError) as exc:
            logger.warning("Unreadable conflict log: %s", exc)
            return []

    def archive_conflict_log(self, suffix: str) -> str | None:
        src = self._path("conflicts.json")
        if not os.path.exists(src):
            return None
        dest = f"{src}.resolved-{suffix}"
        os.replace(src, dest)
        return dest

    # Snapshot pointer, last sync, managed files

    def read_snapshot_pointer(self) -> tuple[str, bool] | None:
        text = self._read("snapshot-state")
        return _pointer_from_text(text) if text is not None else None

    def write_snapshot_pointer(self, name: str, good: bool = False) -> None:
        self._write("snapshot-state", f"{name}:good\n" if good else f"{name}\n")

    def read_last_sync(self) -> str | None:
        text = self._read("last-sync")
        if text is None:
            return None
        return text.strip() or None

    def write_last_sync(self, timestamp: str) -> None:
        self._write("last-sync", f"{timestamp}\n")

    def load_managed_files(self) -> list[str]:
        text = self._read("state/managed-files.json")
        if not text:
            return []
        try:
            return list(json.loads(text))
        except ValueError:
            logger.warning("Discarding corrupt managed-files list")
            return []

    def save_managed_files(self, paths: list[str]) -> None:
        self._write("state/managed-files.json", json.dumps(sorted(set(paths)), indent=2))

    # Backup support

    def export_state(self) -> dict[str, str]:
        exported = {}
        for name in self._EXPORTED:
            text = self._read(name)
            if text is not None:
                exported[name] = text
        return exported

    def import_state(self, data: dict[str, str]) -> None:
        for name in self._EXPORTED:
            if name in data:
                self._write(name, data[name])
            else:
                self._remove(name)


# ── In-memory store ──────────────────────────────────────────────────────────


class MemoryStateStore(StateStore):
    """Dict-backed store for tests and dry runs."""

    def __init__(self) -> None:
        self.lock_pid: int | None = None
        self.checksums: dict[str, dict[str, ChecksumRecord]] = {
            g: {} for g in _GENERATIONS
        }
        self.marker: ConflictMarker | None = None
        self.conflict_log: list[Conflict] | None = None
        self.archived_logs: dict[str, list[Conflict]] = {}
        self.snapshot_pointer: tuple[str, bool] | None = None
        self.last_sync: str | None = None
        self.managed_files: list[str] = []

    def read_lock_pid(self) -> int | None:
        return self.lock_pid

    def try_write_lock(self, pid: int) -> bool:
        if self.lock_pid is not None:
            return False
        self.lock_pid = pid
        return True

    def clear_lock(self) -> None:
        self.lock_pid = None

    def load_checksums(self, generation: str) -> dict[str, ChecksumRecord]:
        _check_generation(generation)
        return dict(self.checksums[generation])

    def save_checksums(
        self, generation: str, records: dict[str, ChecksumRecord]
    ) -> None:
        _check_generation(generation)
        self.checksums[generation] = dict(records)

    def clear_checksums(self, generation: str) -> None:
        _check_generation(generation)
        self.checksums[generation] = {}

    def read_conflict_marker(self) -> ConflictMarker | None:
        return self.marker

    def write_conflict_marker(self, marker: ConflictMarker) -> None:
        self.marker = marker

    def clear_conflict_marker(self) -> None:
        self.marker = None

    def write_conflict_log(self, conflicts: list[Conflict]) -> str:
        self.conflict_log = list(conflicts)
        return "memory://conflicts.json"

    def read_conflict_log(self) -> list[Conflict]:
        return list(self.conflict_log or [])

    def archive_conflict_log(self, suffix: str) -> str | None:
        if self.conflict_log is None:
            return None
        key = f"memory://conflicts.json.resolved-{suffix}"
        self.archived_logs[key] = self.conflict_log
        self.conflict_log = None
        return key

    def read_snapshot_pointer(self) -> tuple[str, bool] | None:
        return self.snapshot_pointer

    def write_snapshot_pointer(self, name: str, good: bool = False) -> None:
        self.snapshot_pointer = (name, good)

    def read_last_sync(self) -> str | None:
        return self.last_sync

    def write_last_sync(self, timestamp: str) -> None:
        self.last_sync = timestamp

    def load_managed_files(self) -> list[str]:
        return list(self.managed_files)

    def save_managed_files(self, paths: list[str]) -> None:
        self.managed_files = sorted(set(paths))

    def export_state(self) -> dict[str, str]:
        data = {
            "prev": _records_to_json(self.checksums[BASELINE]),
            "managed": json.dumps(self.managed_files),
        }
        if self.last_sync is not None:
            data["last-sync"] = self.last_sync
        return data

    def import_state(self, data: dict[str, str]) -> None:
        self.checksums[BASELINE] = _records_from_json(data.get("prev", ""))
        self.managed_files = list(json.loads(data.get("managed", "[]")))
        self.last_sync = data.get("last-sync")
