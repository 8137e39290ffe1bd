"""
Snapshot Backend Registry
~~~~~~~~~~~~~~~~~~~~~~~~~

Holds the snapshot backends in priority order (ZFS > LVM > BTRFS > file)
and resolves which one to use for a configured backend choice.
"""

from __future__ import annotations

import logging

from config_manager.config.schema import SnapshotBackendChoice
from config_manager.core.commands import CommandRunner
from config_manager.core.state import StateStore
from config_manager.exceptions import BackendUnavailableError
from config_manager.rollback.backends.base import SnapshotBackend
from config_manager.rollback.backends.btrfs import BtrfsBackend
from config_manager.rollback.backends.file import FileBackend
from config_manager.rollback.backends.lvm import LvmBackend
from config_manager.rollback.backends.zfs import ZfsBackend

__all__ = ["BackendRegistry"]

logger = logging.getLogger(__name__)


class BackendRegistry:
    """
    Registry of snapshot backends.

    Backends are probed in registration order during auto-detection;
    the file-level fallback is used when none of them detects support.
    """

    def __init__(self, fallback: SnapshotBackend) -> None:
        self._backends: list[SnapshotBackend] = []
        self._fallback = fallback

    @classmethod
    def default(
        cls,
        store: StateStore,
        backups_dir: str,
        runner: CommandRunner | None = None,
        lvm_snapshot_size: str = "1G",
    ) -> BackendRegistry:
        """Registry with the standard backends in priority order."""
        runner = runner or CommandRunner()
        registry = cls(fallback=FileBackend(store, backups_dir))
        registry.register(ZfsBackend(runner))
        registry.register(LvmBackend(runner, size=lvm_snapshot_size))
        registry.register(BtrfsBackend(runner, store=store))
        return registry

    def register(self, backend: SnapshotBackend) -> None:
        """
        Register a backend after those already registered.

        Args:
            backend: The backend to register.
        """
        self._backends.append(backend)
        logger.debug("Registered snapshot backend %s", backend.name)

    def get(self, name: str) -> SnapshotBackend:
        """
        Look up a backend by name.

        Raises:
            BackendUnavailableError: If no backend has that name.
        """
        if name == self._fallback.name:
            return self._fallback
        for backend in self._backends:
            if backend.name == name:
                return backend
        raise BackendUnavailableError(f"Unknown snapshot backend: {name}")

    @property
    def backends(self) -> list[SnapshotBackend]:
        """All backends in priority order, fallback last."""
        return [*self._backends, self._fallback]

    def resolve(self, choice: SnapshotBackendChoice | str) -> SnapshotBackend | None:
        """
        Pick the backend for a configured choice.

        ``none`` disables snapshots, ``auto`` probes in priority order and
        falls back to file-level copies, and a pinned backend must detect
        support on this host.

        Raises:
            BackendUnavailableError: If a pinned backend is not usable.
        """
        choice = SnapshotBackendChoice(choice)
        if choice == SnapshotBackendChoice.NONE:
            return None
        if choice == SnapshotBackendChoice.AUTO:
            for backend in self._backends:
                if backend.detect():
                    logger.info("Auto-detected snapshot backend: %s", backend.name)
                    return backend
            logger.info("No filesystem snapshot support detected; using file-level backups")
            return self._fallback

        backend = self.get(str(choice))
        if not backend.detect():
            raise BackendUnavailableError(
                f"{backend.name} backend requested but the root filesystem is not on "
                f"{backend.name}",
                details={"backend": backend.name},
            )
        return backend
