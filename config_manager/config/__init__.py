"""Config manager configuration — loading, validation, and defaults."""

from config_manager.config.defaults import DEFAULT_CONFIG, DEFAULT_CONFIG_FILE
from config_manager.config.loader import (
    load_config,
    load_config_from_dict,
    parse_env_file,
)
from config_manager.config.schema import (
    AgentPaths,
    SnapshotBackendChoice,
    SnapshotMode,
    SyncConfig,
)

__all__ = [
    "load_config",
    "load_config_from_dict",
    "parse_env_file",
    "SyncConfig",
    "AgentPaths",
    "SnapshotMode",
    "SnapshotBackendChoice",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
]
