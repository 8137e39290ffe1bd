"""Snapshot backends, one per filesystem capability plus the file fallback."""

from config_manager.rollback.backends.base import SnapshotBackend
from config_manager.rollback.backends.btrfs import BtrfsBackend
from config_manager.rollback.backends.file import FileBackend
from config_manager.rollback.backends.lvm import LvmBackend
from config_manager.rollback.backends.zfs import ZfsBackend

__all__ = [
    "SnapshotBackend",
    "ZfsBackend",
    "LvmBackend",
    "BtrfsBackend",
    "FileBackend",
]
