"""config-manager core: models, state, locking, repository and the sync pipeline."""

from config_manager.core.commands import CommandResult, CommandRunner
from config_manager.core.models import ExitCode, SyncOutcome, SyncReport
from config_manager.core.state import FileStateStore, MemoryStateStore, StateStore

__all__ = [
    "CommandResult",
    "CommandRunner",
    "ExitCode",
    "SyncOutcome",
    "SyncReport",
    "StateStore",
    "FileStateStore",
    "MemoryStateStore",
]
