"""Package list parsing, manager variants and batch installation."""

from config_manager.packages.custom import CustomInstaller, CustomOutcome
from config_manager.packages.installer import PackageInstaller
from config_manager.packages.managers import (
    MANAGER_TYPES,
    ApkManager,
    AptManager,
    DnfManager,
    NpmManager,
    PackageManager,
    PipManager,
)
from config_manager.packages.parser import (
    CustomSpec,
    parse_custom_line,
    parse_package_list,
    read_custom_list,
    read_package_list,
)

__all__ = [
    "PackageInstaller",
    "PackageManager",
    "AptManager",
    "ApkManager",
    "DnfManager",
    "NpmManager",
    "PipManager",
    "MANAGER_TYPES",
    "CustomInstaller",
    "CustomOutcome",
    "CustomSpec",
    "parse_package_list",
    "read_package_list",
    "parse_custom_line",
    "read_custom_list",
]
