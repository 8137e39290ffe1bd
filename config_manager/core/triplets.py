"""
File Triplets
~~~~~~~~~~~~~

Discovers deployable files in a repository ``files/`` directory. Each
file ``name`` is described by up to three entries:

- ``name``: the content to deploy
- ``name.path``: first line is the target directory (required)
- ``name.policy``: first line is ``replace``, ``default`` or ``backup``
  (optional, defaults to ``default``)

Also provides the SHA-256 helpers every checksum comparison uses.
"""

from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass, field

from config_manager.core.models import UNREADABLE, FilePolicy, ManagedFile

__all__ = [
    "TripletScan",
    "scan_files_dir",
    "file_digest",
    "is_metadata",
]

logger = logging.getLogger(__name__)

_CHUNK = 1 << 16


def file_digest(path: str) -> str | None:
    """
    SHA-256 hex digest of a file.

    Returns None if the file does not exist and ``UNREADABLE`` if it
    exists but cannot be read.
    """
    if not os.path.lexists(path):
        return None
    h = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(_CHUNK), b""):
                h.update(chunk)
    except OSError as exc:
        logger.warning("Could not checksum %s: %s", path, exc)
        return UNREADABLE
    return h.hexdigest()


def is_metadata(name: str) -> bool:
    return name.endswith((".path", ".policy"))


def _first_line(path: str) -> str:
    with open(path, encoding="utf-8", errors="replace") as f:
        line = f.readline()
    return "".join(line.split())


@dataclass
class TripletScan:
    """
    Result of scanning a ``files/`` directory.

    Attributes:
        files: Valid managed files, in name order.
        errors: Reason per file name that could not be described.
    """

    files: list[ManagedFile] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


def scan_files_dir(files_dir: str, warn: bool = True) -> TripletScan:
    """
    Build ManagedFiles from the triplets in ``files_dir``.

    A missing, empty or relative ``.path`` and an invalid ``.policy`` are
    errors for that file only. A missing ``.policy`` falls back to
    ``default``, with a warning when ``warn`` is set.
    """
    scan = TripletScan()
    if not os.path.isdir(files_dir):
        return scan

    for name in sorted(os.listdir(files_dir)):
        source = os.path.join(files_dir, name)
        if name.startswith(".") or is_metadata(name) or not os.path.isfile(source):
            continue

        path_file = f"{source}.path"
        if not os.path.isfile(path_file):
            scan.errors[name] = "missing .path file"
            continue
        target_dir = _first_line(path_file)
        if not target_dir:
            scan.errors[name] = "empty .path file"
            continue
        if not os.path.isabs(target_dir):
            scan.errors[name] = f"target directory is not absolute: {target_dir}"
            continue

        policy_file = f"{source}.policy"
        defaulted = not os.path.isfile(policy_file)
        if defaulted:
            policy = FilePolicy.DEFAULT
            if warn:
                logger.warning(
                    "Missing .policy file for '%s'; defaulting to 'default'", name
                )
        else:
            raw = _first_line(policy_file)
            try:
                policy = FilePolicy(raw)
            except ValueError:
                scan.errors[name] = f"invalid policy {raw!r}"
                continue

        scan.files.append(
            ManagedFile(
                name=name,
                source=source,
                target=os.path.join(target_dir, name),
                policy=policy,
                policy_defaulted=defaulted,
            )
        )
    return scan
