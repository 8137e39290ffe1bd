"""
Config Manager Data Models
~~~~~~~~~~~~~~~~~~~~~~~~~~

Dataclasses and enums shared by the sync components: managed files,
checksum records, conflicts, snapshots and the per-phase reports that
roll up into one SyncReport.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum, StrEnum

__all__ = [
    "UNREADABLE",
    "SyncOutcome",
    "ExitCode",
    "FilePolicy",
    "ManagedFile",
    "ChecksumRecord",
    "Conflict",
    "DetectionResult",
    "ConflictMarker",
    "SnapshotInfo",
    "RollbackStatus",
    "RollbackResult",
    "ScriptReport",
    "DeployReport",
    "ManagerReport",
    "PackageReport",
    "SyncReport",
]

# Digest value for a file that exists but could not be read.
# A missing file is recorded as ``None``.
UNREADABLE = "unreadable"


class SyncOutcome(StrEnum):
    """Final outcome of one sync run."""

    SUCCESS = "success"
    CONFLICT = "conflict"
    ERROR = "error"


class ExitCode(IntEnum):
    """Process exit codes of ``config-sync``."""

    OK = 0
    ERROR = 1
    LOCKED = 2
    CONFIG = 3
    GIT = 4
    CONFLICT = 5


class FilePolicy(StrEnum):
    """
    How an existing, differing target is treated.

    - REPLACE: always overwrite with the repository copy.
    - DEFAULT: create if absent, otherwise leave the target alone.
    - BACKUP: rename the existing target aside, then write.
    """

    REPLACE = "replace"
    DEFAULT = "default"
    BACKUP = "backup"


@dataclass(frozen=True)
class ManagedFile:
    """
    One deployable file described by a triplet in ``files/``.

    Attributes:
        name: File name inside ``files/`` (also the target's base name).
        source: Absolute path of the repository copy.
        target: Absolute path the file is deployed to.
        policy: Conflict policy for an existing differing target.
        policy_defaulted: True when no ``.policy`` side-car was present.
    """

    name: str
    source: str
    target: str
    policy: FilePolicy = FilePolicy.DEFAULT
    policy_defaulted: bool = False


@dataclass(frozen=True)
class ChecksumRecord:
    """
    Checksums of one managed file at a point in time.

    Attributes:
        target_path: Where the file is deployed.
        target_hash: Digest of the deployed file, None if missing,
            or UNREADABLE.
        source_hash: Digest of the repository copy, None if missing,
            or UNREADABLE.
    """

    target_path: str
    target_hash: str | None
    source_hash: str | None

    def to_dict(self) -> dict[str, str | None]:
        return {"target": self.target_hash, "source": self.source_hash}

    @classmethod
    def from_dict(cls, target_path: str, data: dict) -> ChecksumRecord:
        return cls(
            target_path=target_path,
            target_hash=data.get("target"),
            source_hash=data.get("source"),
        )


@dataclass(frozen=True)
class Conflict:
    """
    A managed file changed both on disk and in the repository.

    Attributes:
        path: Target path of the file.
        local: Digest of the file on disk just before the pull.
        expected: Digest recorded at the last successful sync.
        incoming: Digest of the freshly pulled repository copy.
    """

    path: str
    local: str | None
    expected: str | None
    incoming: str | None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "path": self.path,
            "local": self.local,
            "expected": self.expected,
            "incoming": self.incoming,
        }


@dataclass
class DetectionResult:
    """Result of a three-way checksum comparison."""

    conflicts: list[Conflict] = field(default_factory=list)
    checked: int = 0

    @property
    def clean(self) -> bool:
        return not self.conflicts


@dataclass(frozen=True)
class ConflictMarker:
    """Persisted marker that blocks syncing until resolved."""

    detected_at: str
    count: int
    log_path: str = ""


@dataclass(frozen=True)
class SnapshotInfo:
    """
    A snapshot known to a backend.

    Attributes:
        name: Snapshot name, ``<prefix>-<YYYYmmdd-HHMMSS>``.
        backend: Name of the backend holding it.
        created: Creation time (timezone-aware).
        good: Whether the snapshot was tagged after a successful sync.
    """

    name: str
    backend: str
    created: datetime
    good: bool = False


class RollbackStatus(StrEnum):
    """
    What a rollback actually achieved.

    - RESTORED: state is back in place now.
    - SCHEDULED: the merge completes on next volume activation.
    - MANUAL: a restorable copy was prepared; operator steps are required.
    """

    RESTORED = "restored"
    SCHEDULED = "scheduled"
    MANUAL = "manual"


@dataclass
class RollbackResult:
    """Outcome of rolling back to a snapshot."""

    snapshot: str
    status: RollbackStatus
    message: str = ""
    steps: list[str] = field(default_factory=list)


@dataclass
class ScriptReport:
    """Result of running the setup script chain."""

    executed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed_at: str | None = None
    exit_code: int = 0

    @property
    def ok(self) -> bool:
        return self.failed_at is None


@dataclass
class DeployReport:
    """Per-file counters from the file deployment engine."""

    deployed: int = 0
    skipped: int = 0
    backed_up: int = 0
    errored: int = 0
    written: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


@dataclass
class ManagerReport:
    """Per-manager package counters."""

    manager: str
    installed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


@dataclass
class PackageReport:
    """Package installation results keyed by manager name."""

    managers: dict[str, ManagerReport] = field(default_factory=dict)

    def for_manager(self, name: str) -> ManagerReport:
        if name not in self.managers:
            self.managers[name] = ManagerReport(manager=name)
        return self.managers[name]

    @property
    def installed(self) -> int:
        return sum(len(r.installed) for r in self.managers.values())

    @property
    def skipped(self) -> int:
        return sum(len(r.skipped) for r in self.managers.values())

    @property
    def failed(self) -> int:
        return sum(len(r.failed) for r in self.managers.values())


@dataclass
class SyncReport:
    """
    Everything one sync run did.

    Attributes:
        outcome: success, conflict or error.
        exit_code: Process exit code for the service manager.
        snapshot: Name of the pre-sync snapshot, if one was taken.
        conflicts: Conflicts found, when the outcome is a conflict.
        scripts: Script chain results.
        files: File deployment results.
        packages: Package installation results.
        message: Human-readable reason for a non-success outcome.
        duration_s: Wall-clock duration of the run.
    """

    outcome: SyncOutcome = SyncOutcome.SUCCESS
    exit_code: ExitCode = ExitCode.OK
    snapshot: str | None = None
    conflicts: list[Conflict] = field(default_factory=list)
    scripts: ScriptReport = field(default_factory=ScriptReport)
    files: DeployReport = field(default_factory=DeployReport)
    packages: PackageReport = field(default_factory=PackageReport)
    message: str = ""
    duration_s: float = 0.0

    def summary(self) -> str:
        """One-line summary for the sync log."""
        return (
            f"outcome={self.outcome} exit={int(self.exit_code)} "
            f"scripts={len(self.scripts.executed)} "
            f"files(deployed={self.files.deployed} skipped={self.files.skipped} "
            f"backed_up={self.files.backed_up} errored={self.files.errored}) "
            f"packages(installed={self.packages.installed} "
            f"skipped={self.packages.skipped} failed={self.packages.failed}) "
            f"duration={self.duration_s:.1f}s"
        )
