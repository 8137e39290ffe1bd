"""
Default Configuration
~~~~~~~~~~~~~~~~~~~~~

Defaults applied to every key the config file leaves unset.
"""

from __future__ import annotations

__all__ = ["DEFAULT_CONFIG", "DEFAULT_CONFIG_FILE", "KNOWN_KEYS"]

DEFAULT_CONFIG_FILE = "/etc/config-manager/config.env"

DEFAULT_CONFIG: dict = {
    "CONFIG_REPO_URL": "",
    "CONFIG_BRANCH": "main",
    "CONFIG_PATH": "infra/lxc/container-configs",
    "CONFIG_REPO_DIR": "/opt/config-manager/repo",
    "CONFIG_HELPER_PATH": None,
    "CONFIG_CONTAINER_USER": None,
    "SNAPSHOT_ENABLED": "auto",
    "SNAPSHOT_RETENTION_DAYS": 7,
    "SNAPSHOT_BACKEND": "auto",
    "LVM_SNAPSHOT_SIZE": "1G",
}

KNOWN_KEYS = frozenset(DEFAULT_CONFIG)
