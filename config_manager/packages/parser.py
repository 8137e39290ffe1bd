"""
Package List Parser
~~~~~~~~~~~~~~~~~~~

Reads the declarative package lists in ``packages/``.

Native and cross-distro lists (``*.apt``, ``*.apk``, ``*.dnf``, ``*.npm``,
``*.pip``) hold one package per line. Version pins use each manager's own
syntax verbatim (``curl=7.88.1-10``, ``requests==2.31``, ``pnpm@8``).

Custom lists (``*.custom``) hold ``name|check_cmd|install_cmd[|timeout]``
lines, where ``timeout`` is seconds as ``N`` or ``timeout=N``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from config_manager.exceptions import PackageListError

__all__ = [
    "CustomSpec",
    "DEFAULT_CUSTOM_TIMEOUT",
    "parse_package_list",
    "read_package_list",
    "parse_custom_line",
    "read_custom_list",
]

logger = logging.getLogger(__name__)

DEFAULT_CUSTOM_TIMEOUT = 300

_VALID_PACKAGE = re.compile(r"^[A-Za-z0-9@/_.:~+=*<>!,\[\]-]+$")
_TIMEOUT = re.compile(r"^(?:timeout=)?([0-9]+)$")
# Inline comments in custom lines must follow whitespace.
_CUSTOM_COMMENT = re.compile(r"(^|\s)#.*$")


@dataclass(frozen=True)
class CustomSpec:
    """One custom installer: a check command and an install command."""

    name: str
    check: str
    install: str
    timeout: int = DEFAULT_CUSTOM_TIMEOUT


def parse_package_list(
    text: str, source: str = "<list>", single_equals_pins: bool = False
) -> list[str]:
    """
    Package names from a list, comments and blanks stripped.

    Lines with characters no package manager accepts are skipped with a
    warning. With ``single_equals_pins`` (apt, apk) a ``name==version``
    pin is flagged as a likely typo.
    """
    packages = []
    for raw in text.splitlines():
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue
        if not _VALID_PACKAGE.match(line):
            logger.warning("Invalid characters in package name %r in %s (skipping)", line, source)
            continue
        _, sep, version = line.partition("=")
        if single_equals_pins and sep and version.startswith("="):
            logger.warning("Multiple equals in version pin %r in %s", line, source)
        packages.append(line)
    return packages


def read_package_list(path: str, single_equals_pins: bool = False) -> list[str]:
    """
    Read and parse a package list file.

    Raises:
        PackageListError: If the file cannot be read.
    """
    try:
        with open(path, encoding="utf-8") as f:
            return parse_package_list(f.read(), path, single_equals_pins)
    except OSError as exc:
        raise PackageListError(f"Cannot read package list {path}: {exc}") from exc


def parse_custom_line(line: str) -> CustomSpec:
    """
    Parse one ``name|check|install[|timeout]`` line.

    Raises:
        PackageListError: If a field is missing or the timeout is invalid.
    """
    fields = line.split("|")
    if len(fields) not in (3, 4):
        raise PackageListError(
            f"Expected name|check_cmd|install_cmd[|timeout], got {len(fields)} field(s)"
        )
    name, check, install = (f.strip() for f in fields[:3])
    if not name or not check or not install:
        raise PackageListError("name, check_cmd and install_cmd must all be non-empty")

    timeout = DEFAULT_CUSTOM_TIMEOUT
    if len(fields) == 4 and fields[3].strip():
        match = _TIMEOUT.match(fields[3].strip())
        if not match:
            raise PackageListError(f"Invalid timeout {fields[3].strip()!r}")
        timeout = int(match.group(1))
    return CustomSpec(name=name, check=check, install=install, timeout=timeout)


def read_custom_list(path: str) -> list[CustomSpec]:
    """
    Read a ``*.custom`` file; malformed lines are skipped with a warning.

    Raises:
        PackageListError: If the file cannot be read.
    """
    try:
        with open(path, encoding="utf-8") as f:
            lines = f.read().splitlines()
    except OSError as exc:
        raise PackageListError(f"Cannot read custom package list {path}: {exc}") from exc

    specs = []
    for number, raw in enumerate(lines, start=1):
        line = _CUSTOM_COMMENT.sub("", raw).strip()
        if not line:
            continue
        try:
            specs.append(parse_custom_line(line))
        except PackageListError as exc:
            logger.warning("%s:%d: %s (skipping)", path, number, exc)
    return specs
