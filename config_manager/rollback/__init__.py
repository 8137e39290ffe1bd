"""Snapshot and rollback system: backends, registry and snapshot manager."""

from config_manager.rollback.backends import (
    BtrfsBackend,
    FileBackend,
    LvmBackend,
    SnapshotBackend,
    ZfsBackend,
)
from config_manager.rollback.registry import BackendRegistry
from config_manager.rollback.snapshot_manager import SnapshotManager

__all__ = [
    "BackendRegistry",
    "SnapshotManager",
    "SnapshotBackend",
    "ZfsBackend",
    "LvmBackend",
    "BtrfsBackend",
    "FileBackend",
]
