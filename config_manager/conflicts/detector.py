"""
Conflict Detector
~~~~~~~~~~~~~~~~~

Three-way checksum comparison per managed file:

- **prev**: recorded after the last fully successful sync
- **current**: the deployed file just before this run's pull
- **incoming**: the repository copy after the pull

A file conflicts when it changed in git (incoming differs from the prev
source hash) *and* on disk (current differs from the prev target hash).
It never merges: a conflict writes a log plus a marker, and every later
sync is blocked until ``resolve()`` re-baselines.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from config_manager.core.models import (
    UNREADABLE,
    ChecksumRecord,
    Conflict,
    ConflictMarker,
    DetectionResult,
)
from config_manager.core.state import BASELINE, CURRENT, StateStore
from config_manager.core.triplets import file_digest, scan_files_dir

__all__ = ["ConflictDetector"]

logger = logging.getLogger(__name__)

_BANNER = "═" * 60


def _short(digest: str | None) -> str:
    if digest is None:
        return "missing"
    if digest == UNREADABLE:
        return digest
    return f"{digest[:8]}..."


class ConflictDetector:
    """
    Detects files changed both locally and upstream.

    Args:
        store: Persisted state (checksum tables, marker, log).
        clock: Returns the current local time; injectable for tests.
    """

    def __init__(
        self,
        store: StateStore,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store = store
        self._clock = clock

    # ── Checksum tables ──────────────────────────────────────────

    def compute(self, files_dir: str) -> dict[str, ChecksumRecord]:
        """Checksum every managed file's target and source, keyed by target."""
        records: dict[str, ChecksumRecord] = {}
        for mf in scan_files_dir(files_dir, warn=False).files:
            source_hash = file_digest(mf.source)
            if source_hash in (None, UNREADABLE):
                logger.warning("Could not checksum %s; skipping", mf.source)
                continue
            records[mf.target] = ChecksumRecord(
                target_path=mf.target,
                target_hash=file_digest(mf.target),
                source_hash=source_hash,
            )
        return records

    def record_current(self, files_dir: str) -> dict[str, ChecksumRecord]:
        """Capture the on-disk state before the repository is updated."""
        records = self.compute(files_dir)
        self._store.save_checksums(CURRENT, records)
        logger.info("Recorded pre-sync checksums for %d managed file(s)", len(records))
        return records

    def save_baseline(self, files_dir: str) -> dict[str, ChecksumRecord]:
        """Persist the post-sync state as the new baseline."""
        records = self.compute(files_dir)
        self._store.save_checksums(BASELINE, records)
        self._store.save_managed_files(list(records))
        self._store.clear_checksums(CURRENT)
        logger.info("Saved baseline checksums for %d managed file(s)", len(records))
        return records

    # ── Detection ────────────────────────────────────────────────

    def detect(self, files_dir: str) -> DetectionResult:
        """
        Compare prev, current and incoming checksums.

        Files absent from the baseline are new and never conflict. With
        no baseline at all (first sync) the result is always clean.
        """
        result = DetectionResult()
        prev = self._store.load_checksums(BASELINE)
        if not prev:
            logger.info("No baseline checksums; first sync, skipping conflict detection")
            return result
        current = self._store.load_checksums(CURRENT)

        for mf in scan_files_dir(files_dir, warn=False).files:
            result.checked += 1
            incoming = file_digest(mf.source)
            if incoming in (None, UNREADABLE):
                logger.warning("Could not checksum %s; skipping conflict check", mf.source)
                continue
            baseline = prev.get(mf.target)
            if baseline is None:
                logger.debug("New managed file %s; no conflict possible", mf.target)
                continue

            if mf.target in current:
                local = current[mf.target].target_hash
            else:
                local = file_digest(mf.target)

            git_changed = incoming != baseline.source_hash
            local_changed = local != baseline.target_hash
            if git_changed and local_changed:
                conflict = Conflict(
                    path=mf.target,
                    local=local,
                    expected=baseline.target_hash,
                    incoming=incoming,
                )
                result.conflicts.append(conflict)
                logger.info(
                    "CONFLICT detected: %s (local: %s, expected: %s, incoming: %s)",
                    mf.target,
                    _short(local),
                    _short(baseline.target_hash),
                    _short(incoming),
                )
            elif local_changed:
                logger.debug("Local change only in %s; deferring to file policy", mf.target)

        if result.conflicts:
            logger.warning(
                "Checked %d file(s), found %d conflict(s)",
                result.checked,
                len(result.conflicts),
            )
        else:
            logger.info("Checked %d file(s), no conflicts detected", result.checked)
        return result

    def record_conflicts(
        self, conflicts: list[Conflict], snapshot: str | None = None
    ) -> ConflictMarker:
        """Write the conflict log and the blocking marker, then log a banner."""
        log_path = self._store.write_conflict_log(conflicts)
        marker = ConflictMarker(
            detected_at=self._clock().strftime("%Y-%m-%d %H:%M:%S"),
            count=len(conflicts),
            log_path=log_path,
        )
        self._store.write_conflict_marker(marker)

        logger.error(_BANNER)
        logger.error("[CONFLICT] Sync aborted: manual changes detected")
        logger.error(_BANNER)
        for c in conflicts:
            logger.error("  %s", c.path)
            logger.error("    Local checksum:  %s", c.local or "missing")
            logger.error("    Expected:        %s", c.expected or "missing")
            logger.error("    Git incoming:    %s", c.incoming or "missing")
        if snapshot:
            logger.error("  Snapshot preserved: %s", snapshot)
            logger.error("  To rollback:  config-rollback restore %s", snapshot)
        logger.error("  To resolve:   edit the files, then run: config-rollback resolve")
        logger.error("  Conflict log: %s", log_path)
        logger.error(_BANNER)
        return marker

    # ── Marker management ────────────────────────────────────────

    def marker(self) -> ConflictMarker | None:
        return self._store.read_conflict_marker()

    def conflicts(self) -> list[Conflict]:
        return self._store.read_conflict_log()

    def clear_conflicts(self) -> str | None:
        """
        Drop the marker and archive the conflict log.

        Returns:
            Where the conflict log was archived, if there was one.
        """
        suffix = self._clock().strftime("%Y%m%d-%H%M%S")
        self._store.clear_conflict_marker()
        archived = self._store.archive_conflict_log(suffix)
        if archived:
            logger.info("Archived conflict log to %s", archived)
        return archived

    def resolve(self, files_dir: str | None) -> str | None:
        """
        Accept the current on-disk state.

        Clears the marker, archives the conflict log and, when the configs
        directory is known, re-baselines to what is deployed now. Files are
        not re-evaluated.

        Returns:
            Where the conflict log was archived, if there was one.
        """
        archived = self.clear_conflicts()
        if files_dir is not None:
            self.save_baseline(files_dir)
        else:
            logger.warning("Configs directory unknown; baseline left unchanged")
        logger.info("Conflicts resolved")
        return archived
