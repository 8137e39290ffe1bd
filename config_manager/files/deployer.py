"""
File Deployment Engine
~~~~~~~~~~~~~~~~~~~~~~

Deploys the triplets in ``files/`` under their conflict policy:

- identical content: always a no-op
- ``replace``: overwrite or create
- ``default``: create only if the target is absent
- ``backup``: move a differing target to ``<target>.backup-<ts>``, then write

After every write the target is chowned to its parent directory's owner.
One file's failure never blocks the others.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable
from datetime import datetime

from config_manager.core.models import DeployReport, FilePolicy, ManagedFile
from config_manager.core.triplets import file_digest, scan_files_dir
from config_manager.exceptions import DeploymentError

__all__ = ["FileDeployer", "BACKUP_SUFFIX_FORMAT"]

logger = logging.getLogger(__name__)

BACKUP_SUFFIX_FORMAT = "%Y%m%d-%H%M%S"


class FileDeployer:
    """
    Applies ``files/`` triplets to the container filesystem.

    Args:
        clock: Source of the timestamp used in backup names.
        chown: Ownership setter, ``os.chown`` by default.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = datetime.now,
        chown: Callable[[str, int, int], None] = os.chown,
    ) -> None:
        self._clock = clock
        self._chown = chown

    def deploy(self, files_dir: str) -> DeployReport:
        """
        Deploy every triplet in ``files_dir``.

        Returns:
            Counters plus the list of targets written and per-file errors.
        """
        report = DeployReport()
        if not os.path.isdir(files_dir):
            logger.info("[Files] No files directory at %s", files_dir)
            return report

        scan = scan_files_dir(files_dir)
        for name, reason in scan.errors.items():
            logger.error("[Files] Skipping '%s': %s", name, reason)
            report.errored += 1
            report.errors[name] = reason

        for managed in scan.files:
            try:
                self._deploy_one(managed, report)
            except (DeploymentError, OSError) as exc:
                logger.error("[Files] Failed to deploy %s: %s", managed.target, exc)
                report.errored += 1
                report.errors[managed.name] = str(exc)

        logger.info(
            "[Files] Complete: deployed %d, skipped %d, backed up %d, errors %d",
            report.deployed,
            report.skipped,
            report.backed_up,
            report.errored,
        )
        return report

    def _deploy_one(self, managed: ManagedFile, report: DeployReport) -> None:
        target_dir = os.path.dirname(managed.target)
        os.makedirs(target_dir, exist_ok=True)
        if not os.access(target_dir, os.W_OK):
            raise DeploymentError(f"Target directory is not writable: {target_dir}")

        exists = os.path.lexists(managed.target)
        if exists and file_digest(managed.target) == file_digest(managed.source):
            logger.debug("[Files] Unchanged: %s", managed.target)
            report.skipped += 1
            return

        if exists and managed.policy == FilePolicy.DEFAULT:
            logger.info("[Files] Keeping existing %s (policy: default)", managed.target)
            report.skipped += 1
            return

        if exists and managed.policy == FilePolicy.BACKUP:
            backup = f"{managed.target}.backup-{self._clock().strftime(BACKUP_SUFFIX_FORMAT)}"
            os.replace(managed.target, backup)
            logger.info("[Files] Backed up %s to %s", managed.target, backup)
            report.backed_up += 1

        shutil.copyfile(managed.source, managed.target)
        shutil.copymode(managed.source, managed.target)
        self._match_owner(managed.target, target_dir)
        logger.info("[Files] Deployed %s (policy: %s)", managed.target, managed.policy)
        report.deployed += 1
        report.written.append(managed.target)

    def _match_owner(self, path: str, parent: str) -> None:
        st = os.stat(parent)
        try:
            self._chown(path, st.st_uid, st.st_gid)
        except OSError as exc:
            logger.warning("[Files] Could not set ownership of %s: %s", path, exc)
