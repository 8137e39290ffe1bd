"""Declarative file deployment."""

from config_manager.files.deployer import FileDeployer

__all__ = ["FileDeployer"]
