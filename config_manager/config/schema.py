"""
Configuration Schema
~~~~~~~~~~~~~~~~~~~~

Pydantic model for validating the sync agent configuration, plus the
host paths that are fixed before any config file is read.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config_manager.config.defaults import DEFAULT_CONFIG_FILE

__all__ = [
    "SyncConfig",
    "SnapshotMode",
    "SnapshotBackendChoice",
    "AgentPaths",
]

_URL_RE = re.compile(r"^(https?|ssh)://\S+$")
_SCP_RE = re.compile(r"^[\w.-]+@[\w.-]+:\S+$")
_SIZE_RE = re.compile(r"^[1-9][0-9]*[KMGT]$")


class SnapshotMode(StrEnum):
    """Whether snapshots are taken before a sync."""

    AUTO = "auto"
    YES = "yes"
    NO = "no"


class SnapshotBackendChoice(StrEnum):
    """Snapshot backend selection; ``auto`` detects in priority order."""

    AUTO = "auto"
    ZFS = "zfs"
    LVM = "lvm"
    BTRFS = "btrfs"
    NONE = "none"


class SyncConfig(BaseModel):
    """
    Validated sync agent configuration.

    Field aliases are the key names used in the key=value config file.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    repo_url: str = Field(alias="CONFIG_REPO_URL")
    branch: str = Field(default="main", min_length=1, alias="CONFIG_BRANCH")
    config_path: str = Field(
        default="infra/lxc/container-configs", alias="CONFIG_PATH"
    )
    repo_dir: str = Field(default="/opt/config-manager/repo", alias="CONFIG_REPO_DIR")
    helper_path: str | None = Field(default=None, alias="CONFIG_HELPER_PATH")
    container_user: str | None = Field(default=None, alias="CONFIG_CONTAINER_USER")
    snapshot_enabled: SnapshotMode = Field(
        default=SnapshotMode.AUTO, alias="SNAPSHOT_ENABLED"
    )
    snapshot_retention_days: int = Field(
        default=7, ge=0, alias="SNAPSHOT_RETENTION_DAYS"
    )
    snapshot_backend: SnapshotBackendChoice = Field(
        default=SnapshotBackendChoice.AUTO, alias="SNAPSHOT_BACKEND"
    )
    lvm_snapshot_size: str = Field(default="1G", alias="LVM_SNAPSHOT_SIZE")

    @field_validator("repo_url")
    @classmethod
    def validate_repo_url(cls, v: str) -> str:
        """Accept http(s)://, ssh:// and scp-style user@host:path URLs."""
        v = v.strip()
        if not v:
            raise ValueError("CONFIG_REPO_URL is required")
        if not (_URL_RE.match(v) or _SCP_RE.match(v)):
            raise ValueError(f"Unsupported repository URL: {v!r}")
        return v

    @field_validator("config_path")
    @classmethod
    def validate_config_path(cls, v: str) -> str:
        """Keep the configs directory inside the clone."""
        v = v.strip().strip("/")
        if ".." in v.split("/"):
            raise ValueError(f"CONFIG_PATH must not leave the repository: {v!r}")
        return v

    @field_validator("helper_path", "container_user")
    @classmethod
    def empty_as_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None

    @field_validator("lvm_snapshot_size")
    @classmethod
    def validate_lvm_size(cls, v: str) -> str:
        """Validate an LVM size such as ``512M`` or ``1G``."""
        v = v.strip().upper()
        if not _SIZE_RE.match(v):
            raise ValueError(f"Invalid LVM_SNAPSHOT_SIZE: {v!r} (expected e.g. 1G)")
        return v

    @property
    def configs_dir(self) -> str:
        """Absolute path of the configs directory inside the clone."""
        if not self.config_path:
            return self.repo_dir
        return os.path.join(self.repo_dir, self.config_path)


@dataclass(frozen=True)
class AgentPaths:
    """
    Host locations used by the agent.

    Attributes:
        config_file: The key=value (or YAML) configuration file.
        state_dir: Root of persisted state (checksums, markers, backups).
        log_dir: Directory of the rolling sync and rollback logs.
        lock_file: PID lock guarding a single concurrent sync.
    """

    config_file: str = DEFAULT_CONFIG_FILE
    state_dir: str = "/var/lib/config-manager"
    log_dir: str = "/var/log/config-manager"
    lock_file: str = "/run/config-manager.lock"

    @property
    def sync_log(self) -> str:
        return os.path.join(self.log_dir, "sync.log")

    @property
    def rollback_log(self) -> str:
        return os.path.join(self.log_dir, "rollback.log")

    @property
    def backups_dir(self) -> str:
        return os.path.join(self.state_dir, "backups")
