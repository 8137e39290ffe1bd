"""
Package Managers
~~~~~~~~~~~~~~~~

One variant per supported package manager, each implementing the same
capability interface: availability, index refresh, an installed-query and
a batch install.

Native managers (apt, apk, dnf) only handle lists matching the host's
detected manager; npm and pip lists are processed on any distribution
where the tool exists.
"""

from __future__ import annotations

import json
import os
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence

from config_manager.core.commands import CommandResult, CommandRunner

__all__ = [
    "PackageManager",
    "AptManager",
    "ApkManager",
    "DnfManager",
    "NpmManager",
    "PipManager",
    "MANAGER_TYPES",
]

_PIP_SPECIFIER = re.compile(r"[<>=!~;\[ ]")


class PackageManager(ABC):
    """
    Abstract base for package manager variants.

    Attributes:
        name: Manager name, also the package list file extension.
        native: True for distribution package managers.
        single_equals_pins: Whether ``name=version`` is the pin syntax.
    """

    name: str = ""
    native: bool = False
    single_equals_pins: bool = False

    def __init__(self, runner: CommandRunner | None = None) -> None:
        self._runner = runner or CommandRunner()

    @abstractmethod
    def available(self) -> bool:
        """Whether the manager's tool exists on this host."""
        ...

    def refresh(self) -> CommandResult | None:
        """Refresh the package index; None when the manager has no index."""
        return None

    @abstractmethod
    def is_installed(self, package: str) -> bool:
        """Live query for one package (pin syntax allowed)."""
        ...

    @abstractmethod
    def install(self, packages: Sequence[str]) -> CommandResult:
        """Install all ``packages`` in one call."""
        ...

    def base_name(self, package: str) -> str:
        """Package name with any version pin removed."""
        return package.split("=", 1)[0]

    def _run(self, *args: str, env: dict[str, str] | None = None) -> CommandResult:
        return self._runner.run(list(args), env=env)


class AptManager(PackageManager):
    name = "apt"
    native = True
    single_equals_pins = True

    def available(self) -> bool:
        return self._runner.which("apt-get") is not None

    def refresh(self) -> CommandResult | None:
        return self._run("apt-get", "update", "-qq")

    def is_installed(self, package: str) -> bool:
        result = self._run("dpkg-query", "-W", "-f=${Status}", self.base_name(package))
        return result.ok and "install ok installed" in result.stdout

    def install(self, packages: Sequence[str]) -> CommandResult:
        env = dict(os.environ, DEBIAN_FRONTEND="noninteractive")
        return self._run("apt-get", "install", "-y", "-qq", *packages, env=env)


class ApkManager(PackageManager):
    name = "apk"
    native = True
    single_equals_pins = True

    def available(self) -> bool:
        return self._runner.which("apk") is not None

    def refresh(self) -> CommandResult | None:
        return self._run("apk", "update", "--quiet")

    def is_installed(self, package: str) -> bool:
        return self._run("apk", "info", "-e", re.split(r"[=<>~]", package, maxsplit=1)[0]).ok

    def install(self, packages: Sequence[str]) -> CommandResult:
        return self._run("apk", "add", "--quiet", *packages)


class DnfManager(PackageManager):
    """dnf, falling back to yum on older RHEL-family hosts."""

    name = "dnf"
    native = True

    def _tool(self) -> str | None:
        for tool in ("dnf", "yum"):
            if self._runner.which(tool):
                return tool
        return None

    def available(self) -> bool:
        return self._tool() is not None

    def refresh(self) -> CommandResult | None:
        return self._run(self._tool() or "dnf", "makecache", "-q")

    def is_installed(self, package: str) -> bool:
        return self._run("rpm", "-q", package).ok

    def install(self, packages: Sequence[str]) -> CommandResult:
        return self._run(self._tool() or "dnf", "install", "-y", "-q", *packages)


class NpmManager(PackageManager):
    """Global npm packages."""

    name = "npm"

    def available(self) -> bool:
        return self._runner.which("npm") is not None

    def base_name(self, package: str) -> str:
        # Keep the leading '@' of a scoped package.
        head, sep, _ = package[1:].partition("@")
        return package[0] + head if sep else package

    def is_installed(self, package: str) -> bool:
        result = self._run("npm", "list", "-g", "--depth=0", "--json")
        try:
            deps = json.loads(result.stdout or "{}").get("dependencies") or {}
        except ValueError:
            return False
        return self.base_name(package) in deps

    def install(self, packages: Sequence[str]) -> CommandResult:
        return self._run("npm", "install", "-g", "--quiet", *packages)


class PipManager(PackageManager):
    """System-wide pip packages."""

    name = "pip"

    def _tool(self) -> str | None:
        for tool in ("pip3", "pip"):
            if self._runner.which(tool):
                return tool
        return None

    def available(self) -> bool:
        return self._tool() is not None

    def base_name(self, package: str) -> str:
        return _PIP_SPECIFIER.split(package, maxsplit=1)[0]

    def is_installed(self, package: str) -> bool:
        return self._run(self._tool() or "pip3", "show", self.base_name(package)).ok

    def install(self, packages: Sequence[str]) -> CommandResult:
        tool = self._tool() or "pip3"
        args = [tool, "install", "--quiet"]
        if not os.environ.get("VIRTUAL_ENV"):
            help_text = self._run(tool, "install", "--help").stdout
            if "--break-system-packages" in help_text:
                args.append("--break-system-packages")
        return self._runner.run([*args, *packages])


MANAGER_TYPES: tuple[type[PackageManager], ...] = (
    AptManager,
    ApkManager,
    DnfManager,
    NpmManager,
    PipManager,
)
