"""
config-manager: git-driven configuration sync for LXC containers.

config-manager runs once per boot inside a container and brings it to the
state described by a git repository:

- Ordered, idempotent setup scripts
- Declarative files with per-file conflict policies
- Package lists for apt, apk, dnf, npm, pip and custom installers
- Pre-sync snapshots (ZFS, LVM, BTRFS or file-level) with rollback
- Three-way conflict detection against manual edits

Quick Start::

    from config_manager import AgentPaths, SyncOrchestrator

    report = SyncOrchestrator(AgentPaths()).run()
    print(report.summary())
"""

__version__ = "0.1.0"

from config_manager.config import AgentPaths, SyncConfig, load_config  # noqa: E402
from config_manager.core.models import ExitCode, SyncOutcome, SyncReport  # noqa: E402
from config_manager.core.orchestrator import SyncOrchestrator  # noqa: E402
from config_manager.exceptions import ConfigManagerError  # noqa: E402

__all__ = [
    "AgentPaths",
    "SyncConfig",
    "load_config",
    "SyncOrchestrator",
    "SyncReport",
    "SyncOutcome",
    "ExitCode",
    "ConfigManagerError",
    "__version__",
]
