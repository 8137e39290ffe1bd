"""
Snapshot Manager
~~~~~~~~~~~~~~~~

Creates, lists, tags, rolls back and prunes the pre-sync snapshots on
whichever backend the registry resolves.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from config_manager.config.schema import SnapshotBackendChoice, SnapshotMode
from config_manager.core.models import RollbackResult, SnapshotInfo
from config_manager.core.state import StateStore
from config_manager.exceptions import SnapshotError, SnapshotNotFoundError
from config_manager.rollback.backends.base import SnapshotBackend, make_snapshot_name
from config_manager.rollback.registry import BackendRegistry

__all__ = ["SnapshotManager"]

logger = logging.getLogger(__name__)


def _local_now() -> datetime:
    return datetime.now().astimezone()


class SnapshotManager:
    """
    Manages named, timestamped snapshots of the container.

    The last snapshot taken is recorded in the state store's snapshot
    pointer; it is tagged ``good`` only after a fully successful sync.

    Args:
        registry: Available backends.
        store: State store holding the snapshot pointer.
        mode: Whether snapshots are enabled.
        backend_choice: ``auto``, a pinned backend, or ``none``.
        retention_days: Snapshots older than this are pruned; 0 keeps all.
        clock: Returns the current aware local time.
    """

    def __init__(
        self,
        registry: BackendRegistry,
        store: StateStore,
        mode: SnapshotMode = SnapshotMode.AUTO,
        backend_choice: SnapshotBackendChoice = SnapshotBackendChoice.AUTO,
        retention_days: int = 7,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self._registry = registry
        self._store = store
        self.mode = SnapshotMode(mode)
        self.backend_choice = SnapshotBackendChoice(backend_choice)
        self.retention_days = retention_days
        self._clock = clock
        self._backend: SnapshotBackend | None = None
        self._resolved = False

    @property
    def enabled(self) -> bool:
        return (
            self.mode != SnapshotMode.NO
            and self.backend_choice != SnapshotBackendChoice.NONE
        )

    @property
    def backend(self) -> SnapshotBackend | None:
        """
        The resolved backend, or None when snapshots are disabled.

        Raises:
            BackendUnavailableError: If a pinned backend is not usable.
        """
        if not self._resolved:
            if self.enabled:
                self._backend = self._registry.resolve(self.backend_choice)
            self._resolved = True
        return self._backend

    def _require_backend(self) -> SnapshotBackend:
        backend = self.backend
        if backend is None:
            raise SnapshotError(
                "Snapshots are disabled (SNAPSHOT_ENABLED=no or SNAPSHOT_BACKEND=none)"
            )
        return backend

    # ── Operations ───────────────────────────────────────────────

    def create(self) -> str | None:
        """
        Take a snapshot and record it as the latest.

        Returns:
            The snapshot name, or None when snapshots are disabled.

        Raises:
            SnapshotError: If the backend failed.
        """
        if not self.enabled:
            logger.info("Snapshots are disabled; skipping pre-sync snapshot")
            return None
        backend = self._require_backend()
        name = make_snapshot_name(self._clock())
        backend.create(name)
        self._store.write_snapshot_pointer(name, good=False)
        logger.info("Snapshot created: %s (%s)", name, backend.name)
        return name

    def list(self) -> list[SnapshotInfo]:
        """Managed snapshots, oldest first, with the good flag applied."""
        backend = self._require_backend()
        pointer = self._store.read_snapshot_pointer()
        good_name = pointer[0] if pointer and pointer[1] else None
        snapshots = []
        for snap in backend.list_snapshots():
            if snap.name == good_name and not snap.good:
                snap = SnapshotInfo(snap.name, snap.backend, snap.created, good=True)
            snapshots.append(snap)
        return snapshots

    def tag_good(self, name: str | None = None) -> str | None:
        """Tag ``name`` (default: the latest snapshot) as a verified checkpoint."""
        if name is None:
            pointer = self._store.read_snapshot_pointer()
            if pointer is None:
                return None
            name = pointer[0]
        self._store.write_snapshot_pointer(name, good=True)
        backend = self.backend
        if backend is not None:
            backend.tag_good(name)
        logger.info("Snapshot tagged as good: %s", name)
        return name

    def latest(self) -> tuple[str, bool] | None:
        """``(name, good)`` of the most recent snapshot taken by a sync."""
        return self._store.read_snapshot_pointer()

    def rollback(self, name: str) -> RollbackResult:
        """
        Roll back to ``name``.

        Raises:
            SnapshotNotFoundError: If the snapshot does not exist.
            RollbackFailedError: If the backend could not roll back.
        """
        backend = self._require_backend()
        if not backend.exists(name):
            raise SnapshotNotFoundError(
                f"Snapshot not found on {backend.name}: {name}",
                details={"backend": backend.name, "snapshot": name},
            )
        logger.warning("Rolling back to snapshot %s (%s)", name, backend.name)
        result = backend.rollback(name)
        logger.info("Rollback %s: %s", result.status, result.message)
        return result

    def show(self, name: str) -> list[str]:
        return self._require_backend().show(name)

    def cleanup(self) -> list[str]:
        """
        Delete every snapshot older than the retention period, tagged or not.

        Returns:
            Names of the snapshots removed.
        """
        if not self.enabled or self.retention_days == 0:
            return []
        backend = self._require_backend()
        limit = timedelta(days=self.retention_days)
        now = self._clock()
        removed = []
        for snap in backend.list_snapshots():
            age = now - snap.created
            if age <= limit:
                continue
            logger.info("Removing old snapshot %s (age: %d days)", snap.name, age.days)
            try:
                backend.delete(snap.name)
            except SnapshotError as exc:
                logger.warning("Failed to remove snapshot %s: %s", snap.name, exc)
                continue
            removed.append(snap.name)
        logger.info("Snapshot cleanup complete: removed %d", len(removed))
        return removed
