"""
Config Manager Custom Exceptions
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

All custom exception classes for config-manager, organized by domain.
Every distinct failure mode has its own exception type.

**Structured Error Messages**

Exceptions that stop a sync before it mutates anything provide two
structured fields:
- ``what_happened``: Clear plain-English description
- ``how_to_fix``: Concrete, actionable steps
"""

__all__ = [
    # Base
    "ConfigManagerError",
    # Config
    "ConfigError",
    "ConfigFileNotFoundError",
    "ConfigValidationError",
    # Lock
    "LockError",
    "LockHeldError",
    # Repository
    "RepositoryError",
    "GitSyncError",
    # Conflicts
    "ConflictError",
    "ConflictsDetectedError",
    "ConflictMarkerPresentError",
    # Rollback
    "RollbackError",
    "SnapshotError",
    "SnapshotNotFoundError",
    "BackendUnavailableError",
    "RollbackFailedError",
    # Execution
    "ExecutionError",
    "ScriptFailedError",
    # Files
    "DeploymentError",
    # Packages
    "PackageError",
    "PackageListError",
]


# ── Formatting Helper ────────────────────────────────────────────────────────

_SEPARATOR = "─" * 52


def _format_structured_error(title: str, what_happened: str, how_to_fix: str) -> str:
    """Build a structured, multi-line error message."""
    lines = [
        f"  {title}",
        f"  {_SEPARATOR}",
        "  What happened:",
        *[f"    {line}" for line in what_happened.strip().splitlines()],
        "",
        "  How to fix:",
        *[f"    {line}" for line in how_to_fix.strip().splitlines()],
    ]
    return "\n".join(lines)


# ── Base Exception ───────────────────────────────────────────────────────────


class ConfigManagerError(Exception):
    """Base exception for all config-manager errors."""

    def __init__(self, message: str = "", details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


# ── Config Exceptions ────────────────────────────────────────────────────────


class ConfigError(ConfigManagerError):
    """Base exception for configuration-related errors."""


class ConfigFileNotFoundError(ConfigError):
    """Raised when the configuration file cannot be found at the specified path."""


class ConfigValidationError(ConfigError):
    """Raised when configuration values fail parsing or validation."""


# ── Lock Exceptions ──────────────────────────────────────────────────────────


class LockError(ConfigManagerError):
    """Base exception for sync lock errors."""


class LockHeldError(LockError):
    """
    Raised when another live process already holds the sync lock.

    Structured fields:
    - ``what_happened``: which PID holds the lock
    - ``how_to_fix``: how to wait for or clear the other run
    """

    def __init__(
        self,
        message: str = "Sync lock is held",
        pid: int = 0,
        lock_path: str = "",
        details: dict | None = None,
    ) -> None:
        self.pid = pid
        self.lock_path = lock_path
        self.what_happened = (
            f"Another config-sync is running (PID {pid}); lock file {lock_path}."
        )
        self.how_to_fix = (
            "1. Wait for the running sync to finish; the next trigger will retry\n"
            f"2. If PID {pid} is not a config-sync process, remove {lock_path}"
        )
        super().__init__(message, details)

    def __str__(self) -> str:
        return _format_structured_error(
            title=f"LockHeldError: {self.args[0]}",
            what_happened=self.what_happened,
            how_to_fix=self.how_to_fix,
        )


# ── Repository Exceptions ────────────────────────────────────────────────────


class RepositoryError(ConfigManagerError):
    """Base exception for configuration repository errors."""


class GitSyncError(RepositoryError):
    """Raised when the repository cannot be cloned and no cached copy exists."""


# ── Conflict Exceptions ──────────────────────────────────────────────────────


class ConflictError(ConfigManagerError):
    """Base exception for conflict detection errors."""


class ConflictsDetectedError(ConflictError):
    """
    Raised when managed files changed both locally and in the repository.

    Structured fields:
    - ``what_happened``: the conflicting target paths
    - ``how_to_fix``: rollback and resolve commands
    """

    def __init__(
        self,
        message: str = "Conflicts detected",
        paths: list[str] | None = None,
        snapshot: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.paths = list(paths or [])
        self.snapshot = snapshot
        listing = "\n".join(f"- {p}" for p in self.paths) or "(none)"
        self.what_happened = (
            "Files were edited on this container and also changed in git:\n"
            f"{listing}"
        )
        steps = ["1. Edit the conflicting files, then run: config-rollback resolve"]
        if snapshot:
            steps.append(f"2. Or roll back: config-rollback restore {snapshot}")
        self.how_to_fix = "\n".join(steps)
        super().__init__(message, details)

    def __str__(self) -> str:
        return _format_structured_error(
            title=f"ConflictsDetectedError: {self.args[0]}",
            what_happened=self.what_happened,
            how_to_fix=self.how_to_fix,
        )


class ConflictMarkerPresentError(ConflictError):
    """
    Raised when an unresolved conflict from an earlier run blocks syncing.

    Structured fields:
    - ``what_happened``: when the conflict was recorded
    - ``how_to_fix``: the resolve command
    """

    def __init__(
        self,
        message: str = "Unresolved conflict marker present",
        detected_at: str = "",
        count: int = 0,
        details: dict | None = None,
    ) -> None:
        self.detected_at = detected_at
        self.count = count
        self.what_happened = (
            f"A previous sync recorded {count} conflicting file(s) at "
            f"{detected_at or 'an unknown time'}; syncing is blocked."
        )
        self.how_to_fix = (
            "1. Inspect: config-rollback status\n"
            "2. Fix the files, then run: config-rollback resolve"
        )
        super().__init__(message, details)

    def __str__(self) -> str:
        return _format_structured_error(
            title=f"ConflictMarkerPresentError: {self.args[0]}",
            what_happened=self.what_happened,
            how_to_fix=self.how_to_fix,
        )


# ── Rollback Exceptions ──────────────────────────────────────────────────────


class RollbackError(ConfigManagerError):
    """Base exception for snapshot and rollback errors."""


class SnapshotError(RollbackError):
    """Raised when a snapshot backend operation fails."""


class SnapshotNotFoundError(SnapshotError):
    """Raised when a named snapshot does not exist on the active backend."""


class BackendUnavailableError(SnapshotError):
    """Raised when a pinned snapshot backend is not usable on this host."""


class RollbackFailedError(RollbackError):
    """Raised when a rollback operation fails to restore state."""


# ── Execution Exceptions ─────────────────────────────────────────────────────


class ExecutionError(ConfigManagerError):
    """Base exception for setup script execution errors."""


class ScriptFailedError(ExecutionError):
    """Raised when a setup script exits non-zero and halts the chain."""

    def __init__(
        self,
        message: str = "Script failed",
        script: str = "",
        exit_code: int = 1,
        details: dict | None = None,
    ) -> None:
        self.script = script
        self.exit_code = exit_code
        super().__init__(message, details)


# ── File Exceptions ──────────────────────────────────────────────────────────


class DeploymentError(ConfigManagerError):
    """Raised when a single managed file cannot be deployed."""


# ── Package Exceptions ───────────────────────────────────────────────────────


class PackageError(ConfigManagerError):
    """Base exception for package installation errors."""


class PackageListError(PackageError):
    """Raised when a package list file cannot be read."""
