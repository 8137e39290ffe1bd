"""
Sync Orchestrator
~~~~~~~~~~~~~~~~~

Drives one sync run end to end::

    lock -> config -> conflict-marker gate -> snapshot (best effort)
         -> record current checksums -> git pull -> conflict check
         -> scripts -> files -> packages
         -> save baseline, tag snapshot good, prune, release lock

Every phase before the conflict check leaves the container untouched;
a conflict or a failing script stops the run before anything after it.
The lock is released on every exit path.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import time
from collections.abc import Callable
from datetime import datetime

from config_manager.config.loader import load_config
from config_manager.config.schema import AgentPaths, SyncConfig
from config_manager.conflicts.detector import ConflictDetector
from config_manager.core.commands import CommandRunner
from config_manager.core.environment import HostEnvironment, detect_environment
from config_manager.core.lock import SyncLock, pid_alive
from config_manager.core.models import ExitCode, SyncOutcome, SyncReport
from config_manager.core.repository import ConfigRepository, GitRepository
from config_manager.core.state import FileStateStore, StateStore
from config_manager.exceptions import (
    ConfigError,
    ConfigManagerError,
    ConfigValidationError,
    ConflictError,
    ConflictMarkerPresentError,
    ConflictsDetectedError,
    LockHeldError,
    RepositoryError,
    ScriptFailedError,
    SnapshotError,
)
from config_manager.files.deployer import FileDeployer
from config_manager.packages.installer import PackageInstaller
from config_manager.rollback.registry import BackendRegistry
from config_manager.rollback.snapshot_manager import SnapshotManager
from config_manager.scripts.engine import ScriptEngine

__all__ = ["SyncOrchestrator"]

logger = logging.getLogger(__name__)

_LAST_SYNC_FORMAT = "%Y-%m-%d %H:%M:%S"


class SyncOrchestrator:
    """
    Runs the sync pipeline.

    Components not supplied are built from the loaded configuration, so
    production code only passes ``paths`` while tests inject fakes.

    Args:
        paths: Host locations (config file, state, logs, lock).
        config: Pre-loaded configuration; read from ``paths`` otherwise.
        store: State store; file-backed under ``paths.state_dir`` by default.
        runner: Command runner shared by all components.
        repository: Config repository; a git checkout by default.
        snapshots: Snapshot manager; built from the config by default.
        scripts: Script engine.
        deployer: File deployment engine.
        packages: Package installer; built for the detected manager by default.
        environment: Host facts; detected by default.
        clock: Local time source.
        pid: PID written to the lock.
        is_alive: Liveness check for a lock holder.
    """

    def __init__(
        self,
        paths: AgentPaths | None = None,
        config: SyncConfig | None = None,
        *,
        store: StateStore | None = None,
        runner: CommandRunner | None = None,
        repository: ConfigRepository | None = None,
        snapshots: SnapshotManager | None = None,
        scripts: ScriptEngine | None = None,
        deployer: FileDeployer | None = None,
        packages: PackageInstaller | None = None,
        environment: HostEnvironment | None = None,
        clock: Callable[[], datetime] = datetime.now,
        pid: int | None = None,
        is_alive: Callable[[int], bool] = pid_alive,
    ) -> None:
        self.paths = paths or AgentPaths()
        self.config = config
        self.store = store or FileStateStore(self.paths.state_dir, self.paths.lock_file)
        self.runner = runner or CommandRunner()
        self.detector = ConflictDetector(self.store, clock=clock)
        self._repository = repository
        self._snapshots = snapshots
        self._scripts = scripts
        self._deployer = deployer or FileDeployer(clock=clock)
        self._packages = packages
        self._environment = environment
        self._clock = clock
        self._pid = pid
        self._is_alive = is_alive

    # ── Component construction ───────────────────────────────────

    def _load_config(self) -> SyncConfig:
        if self.config is None:
            logger.info("Loading configuration from %s", self.paths.config_file)
            self.config = load_config(self.paths.config_file)
        return self.config

    def repository(self, config: SyncConfig) -> ConfigRepository:
        if self._repository is None:
            self._repository = GitRepository(config.repo_url, config.branch, config.repo_dir)
        return self._repository

    def snapshots(self, config: SyncConfig) -> SnapshotManager:
        if self._snapshots is None:
            registry = BackendRegistry.default(
                self.store,
                self.paths.backups_dir,
                self.runner,
                lvm_snapshot_size=config.lvm_snapshot_size,
            )
            self._snapshots = SnapshotManager(
                registry,
                self.store,
                mode=config.snapshot_enabled,
                backend_choice=config.snapshot_backend,
                retention_days=config.snapshot_retention_days,
            )
        return self._snapshots

    def _host(self, config: SyncConfig) -> HostEnvironment:
        first_run = self.store.is_first_run()
        if self._environment is not None:
            return dataclasses.replace(self._environment, first_run=first_run)
        return detect_environment(
            self.runner.which,
            user_override=config.container_user,
            first_run=first_run,
        )

    # ── Run ──────────────────────────────────────────────────────

    def run(self) -> SyncReport:
        """
        Execute one sync.

        Never raises for expected failures: the outcome and exit code are
        reported in the returned SyncReport.
        """
        started = time.monotonic()
        report = SyncReport()
        lock = SyncLock(
            self.store,
            pid=self._pid,
            is_alive=self._is_alive,
            lock_path=self.paths.lock_file,
        )
        logger.info("Starting configuration sync")
        try:
            lock.acquire()
        except LockHeldError as exc:
            logger.error("%s", exc)
            return self._finish(report, started, SyncOutcome.ERROR, ExitCode.LOCKED, exc)

        try:
            self._run_locked(report)
        except ConfigError as exc:
            logger.error("Configuration error: %s", exc)
            return self._finish(report, started, SyncOutcome.ERROR, ExitCode.CONFIG, exc)
        except RepositoryError as exc:
            logger.error("Repository error: %s", exc)
            return self._finish(report, started, SyncOutcome.ERROR, ExitCode.GIT, exc)
        except ConflictError as exc:
            logger.error("%s", exc)
            return self._finish(report, started, SyncOutcome.CONFLICT, ExitCode.CONFLICT, exc)
        except ScriptFailedError as exc:
            logger.error("%s", exc)
            return self._finish(report, started, SyncOutcome.ERROR, ExitCode.ERROR, exc)
        except ConfigManagerError as exc:
            logger.error("Sync failed: %s", exc)
            return self._finish(report, started, SyncOutcome.ERROR, ExitCode.ERROR, exc)
        finally:
            lock.release()
        return self._finish(report, started, SyncOutcome.SUCCESS, ExitCode.OK)

    def _run_locked(self, report: SyncReport) -> None:
        config = self._load_config()
        logger.info("Repository: %s (branch: %s)", config.repo_url, config.branch)

        marker = self.detector.marker()
        if marker is not None:
            report.conflicts = self.detector.conflicts()
            raise ConflictMarkerPresentError(
                "Unresolved conflicts from a previous sync",
                detected_at=marker.detected_at,
                count=marker.count,
            )

        host = self._host(config)
        snapshots = self.snapshots(config)
        try:
            report.snapshot = snapshots.create()
        except SnapshotError as exc:
            logger.warning("Snapshot failed, continuing without one: %s", exc)

        repository = self.repository(config)
        configs_dir = os.path.join(repository.path, config.config_path)
        files_dir = os.path.join(configs_dir, "files")
        self.detector.record_current(files_dir)

        repository.sync()
        if not os.path.isdir(configs_dir):
            raise ConfigValidationError(
                f"CONFIG_PATH '{config.config_path}' not found in repository",
                details={"configs_dir": configs_dir},
            )

        detection = self.detector.detect(files_dir)
        if not detection.clean:
            report.conflicts = detection.conflicts
            self.detector.record_conflicts(detection.conflicts, report.snapshot)
            raise ConflictsDetectedError(
                "Sync aborted: manual changes conflict with repository changes",
                paths=[c.path for c in detection.conflicts],
                snapshot=report.snapshot,
            )

        engine = self._scripts or ScriptEngine(self.runner, helper=config.helper_path)
        report.scripts = engine.execute(
            os.path.join(configs_dir, "scripts"), host, configs_dir, self.paths.sync_log
        )
        if not report.scripts.ok:
            raise ScriptFailedError(
                f"Script '{report.scripts.failed_at}' failed with exit code "
                f"{report.scripts.exit_code}; remaining phases skipped",
                script=report.scripts.failed_at or "",
                exit_code=report.scripts.exit_code,
            )

        report.files = self._deployer.deploy(files_dir)

        installer = self._packages or PackageInstaller(host.package_manager, self.runner)
        report.packages = installer.install(os.path.join(configs_dir, "packages"))

        self.detector.save_baseline(files_dir)
        if report.snapshot:
            try:
                snapshots.tag_good(report.snapshot)
            except SnapshotError as exc:
                logger.warning("Failed to tag snapshot %s as good: %s", report.snapshot, exc)
        try:
            snapshots.cleanup()
        except SnapshotError as exc:
            logger.warning("Snapshot cleanup failed: %s", exc)
        self.store.write_last_sync(self._clock().strftime(_LAST_SYNC_FORMAT))

    def _finish(
        self,
        report: SyncReport,
        started: float,
        outcome: SyncOutcome,
        exit_code: ExitCode,
        error: Exception | None = None,
    ) -> SyncReport:
        report.outcome = outcome
        report.exit_code = exit_code
        if error is not None:
            report.message = str(error.args[0]) if error.args else str(error)
        report.duration_s = time.monotonic() - started
        log = logger.info if outcome == SyncOutcome.SUCCESS else logger.error
        log("Sync finished: %s", report.summary())
        return report
