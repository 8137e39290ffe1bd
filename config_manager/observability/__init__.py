"""config-manager observability: log file and journal output."""

from config_manager.observability.logging import configure_logging

__all__ = ["configure_logging"]
