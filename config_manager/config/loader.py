"""
Configuration Loader
~~~~~~~~~~~~~~~~~~~~

Loads and validates the agent configuration, merging with defaults.

The canonical format is a shell-style ``KEY=value`` file; a YAML mapping
of the same keys is accepted when the file name ends in ``.yaml``/``.yml``.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import yaml

from config_manager.config.defaults import DEFAULT_CONFIG, KNOWN_KEYS
from config_manager.config.schema import SyncConfig
from config_manager.exceptions import (
    ConfigFileNotFoundError,
    ConfigValidationError,
)

__all__ = ["load_config", "load_config_from_dict", "parse_env_file"]

logger = logging.getLogger(__name__)

# Key names written by older installers.
_LEGACY_KEYS = {
    "REPO_URL": "CONFIG_REPO_URL",
    "REPO_BRANCH": "CONFIG_BRANCH",
    "REPO_DIR": "CONFIG_REPO_DIR",
    "CONFIGS_SUBDIR": "CONFIG_PATH",
    "CONTAINER_USER": "CONFIG_CONTAINER_USER",
}


def _strip_value(raw: str) -> str:
    """Strip quotes and trailing inline comments from a raw value."""
    value = raw.strip()
    if value[:1] in ("'", '"'):
        quote = value[0]
        end = value.find(quote, 1)
        if end != -1:
            return value[1:end]
        return value[1:]
    if "#" in value:
        value = value.split("#", 1)[0]
    return value.strip()


def parse_env_file(text: str) -> dict[str, str]:
    """
    Parse ``KEY=value`` lines into a dict.

    Blank lines and ``#`` comments are skipped, an ``export`` prefix is
    allowed, and the last assignment of a key wins.

    Raises:
        ConfigValidationError: If a non-comment line is not an assignment.
    """
    values: dict[str, str] = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if stripped.startswith("export "):
            stripped = stripped[len("export ") :].lstrip()
        key, sep, raw = stripped.partition("=")
        key = key.strip()
        if not sep or not key or not key.replace("_", "").isalnum():
            raise ConfigValidationError(
                f"Line {lineno}: expected KEY=value, got {line.strip()!r}"
            )
        values[key] = _strip_value(raw)
    return values


def load_config(path: str) -> SyncConfig:
    """
    Load configuration from a key=value or YAML file.

    Merges user config with defaults and validates via Pydantic.

    Args:
        path: Path to the configuration file.

    Returns:
        Validated SyncConfig instance.

    Raises:
        ConfigFileNotFoundError: If the file doesn't exist.
        ConfigValidationError: If the config fails parsing or validation.
    """
    if not os.path.exists(path):
        raise ConfigFileNotFoundError(f"Configuration file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except OSError as exc:
        raise ConfigValidationError(f"Cannot read configuration file: {exc}") from exc

    if path.endswith((".yaml", ".yml")):
        try:
            user_config = yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(
                f"Invalid YAML in configuration file: {exc}"
            ) from exc
        if not isinstance(user_config, dict):
            raise ConfigValidationError(
                f"Configuration file must contain a mapping: {path}"
            )
    else:
        user_config = parse_env_file(text)

    return load_config_from_dict(user_config)


def load_config_from_dict(data: dict[str, Any]) -> SyncConfig:
    """
    Load configuration from a dictionary, merging with defaults.

    Unknown keys are logged and ignored.

    Args:
        data: Configuration dictionary keyed by config-file names.

    Returns:
        Validated SyncConfig instance.

    Raises:
        ConfigValidationError: If validation fails.
    """
    merged = dict(DEFAULT_CONFIG)
    for key, value in data.items():
        key = str(key)
        if key in _LEGACY_KEYS:
            canonical = _LEGACY_KEYS[key]
            if canonical in data:
                continue
            logger.warning("Config key %s is deprecated; use %s", key, canonical)
            key = canonical
        if key not in KNOWN_KEYS:
            logger.warning("Ignoring unknown config key: %s", key)
            continue
        if isinstance(value, bool):
            # YAML 1.1 reads bare yes/no as booleans.
            value = "yes" if value else "no"
        merged[key] = value

    try:
        return SyncConfig(**merged)
    except Exception as exc:
        raise ConfigValidationError(f"Configuration validation failed: {exc}") from exc
