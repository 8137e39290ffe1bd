"""
Host Environment Detection
~~~~~~~~~~~~~~~~~~~~~~~~~~

Detects the facts setup scripts are given: OS family and version, the
primary (non-root) container user, the native package manager and
whether this is the first sync on the host.
"""

from __future__ import annotations

import logging
import os
import pwd
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass

__all__ = [
    "HostEnvironment",
    "parse_os_release",
    "detect_os",
    "detect_user",
    "detect_package_manager",
    "detect_environment",
]

logger = logging.getLogger(__name__)

_KNOWN_OS = ("ubuntu", "debian", "alpine", "fedora", "centos", "rhel", "rocky", "almalinux")
_NO_LOGIN = re.compile(r"nologin|false")
_FALLBACK_USER = "coder"

# Priority order; yum is reported as itself so scripts can tell it apart.
_NATIVE_MANAGERS = (("apt-get", "apt"), ("apk", "apk"), ("dnf", "dnf"), ("yum", "yum"))


@dataclass(frozen=True)
class HostEnvironment:
    """
    Detected facts about the container.

    Attributes:
        os_id: Normalised distribution id (``debian``, ``alpine``...).
        os_version: ``VERSION_ID`` from os-release.
        user: Primary non-root user.
        package_manager: ``apt``, ``apk``, ``dnf``, ``yum`` or ``unknown``.
        first_run: True until a sync has completed successfully.
    """

    os_id: str = "unknown"
    os_version: str = "unknown"
    user: str = _FALLBACK_USER
    package_manager: str = "unknown"
    first_run: bool = True


def parse_os_release(text: str) -> dict[str, str]:
    """Parse ``/etc/os-release`` into a dict with quotes removed."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip("\"'")
    return values


def detect_os(os_release_path: str = "/etc/os-release") -> tuple[str, str]:
    """
    Return ``(os_id, version)``.

    Known distributions keep their own id; derivatives map to ``debian``
    or ``fedora`` through ``ID_LIKE``.
    """
    try:
        with open(os_release_path, encoding="utf-8") as f:
            info = parse_os_release(f.read())
    except OSError:
        logger.warning("Cannot detect OS: %s not found", os_release_path)
        return "unknown", "unknown"

    os_id = info.get("ID", "unknown").lower()
    id_like = info.get("ID_LIKE", "").lower()
    version = info.get("VERSION_ID", "unknown")
    if os_id not in _KNOWN_OS:
        if "debian" in id_like:
            os_id = "debian"
        elif "rhel" in id_like or "fedora" in id_like:
            os_id = "fedora"
    return os_id, version


def detect_user(
    override: str | None = None,
    entries: Iterable[pwd.struct_passwd] | None = None,
    home_dir: str = "/home",
) -> str:
    """
    Pick the primary container user.

    Order: explicit override, first account with ``1000 <= uid < 65534``
    and a login shell, first directory under ``/home``, then ``coder``.
    """
    if override:
        return override
    for entry in entries if entries is not None else pwd.getpwall():
        if 1000 <= entry.pw_uid < 65534 and not _NO_LOGIN.search(entry.pw_shell):
            return entry.pw_name
    try:
        homes = sorted(
            d.name for d in os.scandir(home_dir) if d.is_dir(follow_symlinks=False)
        )
    except OSError:
        homes = []
    if homes:
        return homes[0]
    return _FALLBACK_USER


def detect_package_manager(which: Callable[[str], str | None]) -> str:
    """Return the first native package manager found on PATH."""
    for binary, name in _NATIVE_MANAGERS:
        if which(binary):
            return name
    logger.warning("No supported package manager found (apt, apk, dnf, yum)")
    return "unknown"


def detect_environment(
    which: Callable[[str], str | None],
    user_override: str | None = None,
    first_run: bool = True,
    os_release_path: str = "/etc/os-release",
) -> HostEnvironment:
    """Detect everything at once."""
    os_id, os_version = detect_os(os_release_path)
    env = HostEnvironment(
        os_id=os_id,
        os_version=os_version,
        user=detect_user(user_override),
        package_manager=detect_package_manager(which),
        first_run=first_run,
    )
    logger.info(
        "Environment: os=%s %s user=%s pkg=%s first_run=%s",
        env.os_id,
        env.os_version,
        env.user,
        env.package_manager,
        env.first_run,
    )
    return env
