"""Integration test: full sync runs against a local repository checkout."""

import os

import pytest
from conftest import FakeRunner, LocalRepository, add_triplet, apt_host_runner, read, write

from config_manager import AgentPaths, ExitCode, SyncOrchestrator, SyncOutcome
from config_manager.config import load_config_from_dict
from config_manager.conflicts.detector import ConflictDetector
from config_manager.core.models import RollbackStatus
from config_manager.core.state import BASELINE, FileStateStore
from config_manager.exceptions import GitSyncError
from config_manager.rollback.backends.btrfs import BtrfsBackend
from config_manager.rollback.backends.file import FileBackend
from config_manager.rollback.registry import BackendRegistry
from config_manager.rollback.snapshot_manager import SnapshotManager


class Pipeline:
    """One container: persistent state, a fake apt host and a local checkout."""

    def __init__(self, paths, config, host, clock, repo_dir):
        self.paths = paths
        self.config = config
        self.host = host
        self.clock = clock
        self.store = FileStateStore(paths.state_dir, paths.lock_file)
        self.runner = apt_host_runner()
        self.repository = LocalRepository(repo_dir)

    def snapshots(self, backups_dir=None):
        backend = FileBackend(self.store, backups_dir or self.paths.backups_dir, clock=self.clock)
        return SnapshotManager(BackendRegistry(fallback=backend), self.store, clock=self.clock)

    def run(self, **overrides):
        options = {
            "store": self.store,
            "runner": self.runner,
            "repository": self.repository,
            "snapshots": self.snapshots(),
            "environment": self.host,
            "clock": self.clock,
        }
        options.update(overrides)
        return SyncOrchestrator(self.paths, self.config, **options).run()


@pytest.fixture
def agent_paths(tmp_path):
    return AgentPaths(
        config_file=str(tmp_path / "config.env"),
        state_dir=str(tmp_path / "state"),
        log_dir=str(tmp_path / "logs"),
        lock_file=str(tmp_path / "run" / "sync.lock"),
    )


@pytest.fixture
def pipeline(agent_paths, sync_config, host, ticker, repo_dir):
    return Pipeline(agent_paths, sync_config, host, ticker, repo_dir)


@pytest.fixture
def files_dir(configs_dir):
    return os.path.join(configs_dir, "files")


@pytest.fixture
def script_log(tmp_path):
    return str(tmp_path / "script.log")


@pytest.fixture
def populated(configs_dir, files_dir, target_root, script_log):
    """A repository with one script, one managed file and one apt list."""
    write(
        os.path.join(configs_dir, "scripts", "10-setup.sh"),
        f'#!/bin/bash\necho "first_run=$CONFIG_MANAGER_FIRST_RUN" >> {script_log}\n',
        0o755,
    )
    target = add_triplet(files_dir, "motd", "welcome v1\n", target_root, policy="replace")
    write(os.path.join(configs_dir, "packages", "base.apt"), "curl\n")
    return target


class TestSyncPipeline:
    """End-to-end sync runs."""

    def test_first_sync_applies_everything(self, pipeline, populated, script_log):
        """Scripts run, files land, packages install and the snapshot is tagged good."""
        report = pipeline.run()

        assert report.outcome == SyncOutcome.SUCCESS
        assert report.exit_code == ExitCode.OK
        assert report.scripts.executed == ["10-setup.sh"]
        assert read(script_log) == "first_run=true\n"
        assert read(populated) == "welcome v1\n"
        assert report.packages.managers["apt"].installed == ["curl"]

        store = pipeline.store
        assert report.snapshot is not None
        assert store.read_snapshot_pointer() == (report.snapshot, True)
        assert store.read_last_sync() is not None
        assert populated in store.load_checksums(BASELINE)
        assert store.load_managed_files() == [populated]
        assert store.read_lock_pid() is None

    def test_second_sync_is_idempotent(self, pipeline, populated, script_log):
        """A repeat run installs nothing and writes nothing."""
        pipeline.run()
        report = pipeline.run()

        assert report.outcome == SyncOutcome.SUCCESS
        assert report.packages.installed == 0
        assert report.packages.skipped == 1
        assert report.files.deployed == 0
        assert report.files.skipped == 1
        assert len(pipeline.runner.commands("apt-get", "install")) == 1
        assert read(script_log).splitlines() == ["first_run=true", "first_run=false"]

    def test_lock_contention(self, pipeline, populated):
        """A second sync while one is running changes nothing."""
        pipeline.store.try_write_lock(os.getppid())
        report = pipeline.run()

        assert report.exit_code == ExitCode.LOCKED
        assert pipeline.repository.syncs == 0
        assert not os.path.exists(populated)
        assert pipeline.store.read_snapshot_pointer() is None
        assert pipeline.store.read_lock_pid() == os.getppid()

    def test_stale_lock_is_reclaimed(self, pipeline, populated):
        """A lock left by a dead process does not block the sync."""
        pipeline.store.try_write_lock(999_999)
        report = pipeline.run(is_alive=lambda pid: False)
        assert report.exit_code == ExitCode.OK
        assert pipeline.store.read_lock_pid() is None


class TestConflicts:
    """Manual edits colliding with repository changes."""

    def test_conflict_blocks_until_resolved(self, pipeline, populated, files_dir, script_log):
        """A conflict aborts, keeps blocking, and clears after resolve."""
        assert pipeline.run().exit_code == ExitCode.OK

        write(populated, "edited on the container\n")
        source = os.path.join(files_dir, "motd")
        pipeline.repository.on_sync = lambda: write(source, "welcome v2\n")

        report = pipeline.run()
        assert report.outcome == SyncOutcome.CONFLICT
        assert report.exit_code == ExitCode.CONFLICT
        assert [c.path for c in report.conflicts] == [populated]
        assert report.scripts.executed == []
        assert read(populated) == "edited on the container\n"
        assert pipeline.store.read_conflict_marker().count == 1
        assert pipeline.store.read_snapshot_pointer() == (report.snapshot, False)

        # The marker stops the next run before the repository is touched.
        pipeline.repository.on_sync = None
        syncs = pipeline.repository.syncs
        blocked = pipeline.run()
        assert blocked.exit_code == ExitCode.CONFLICT
        assert pipeline.repository.syncs == syncs
        assert [c.path for c in blocked.conflicts] == [populated]

        ConflictDetector(pipeline.store).resolve(files_dir)
        report = pipeline.run()
        assert report.exit_code == ExitCode.OK
        assert read(populated) == "welcome v2\n"
        assert len(read(script_log).splitlines()) == 2

    def test_local_edit_alone_is_not_a_conflict(self, pipeline, populated):
        """Without an upstream change the file policy decides."""
        pipeline.run()
        write(populated, "edited on the container\n")
        report = pipeline.run()
        assert report.exit_code == ExitCode.OK
        # policy=replace restores the repository copy.
        assert read(populated) == "welcome v1\n"


class TestFailures:
    """Phase failures and the exit codes they map to."""

    def test_failing_script_halts_the_run(self, pipeline, configs_dir, populated):
        """Later scripts, files and packages are all skipped."""
        write(os.path.join(configs_dir, "scripts", "20-fail.sh"), "#!/bin/bash\nexit 7\n", 0o755)
        write(os.path.join(configs_dir, "scripts", "30-after.sh"), "#!/bin/bash\ntrue\n", 0o755)

        report = pipeline.run()
        assert report.exit_code == ExitCode.ERROR
        assert report.scripts.failed_at == "20-fail.sh"
        assert report.scripts.executed == ["10-setup.sh"]
        assert "20-fail.sh" in report.message
        assert not os.path.exists(populated)
        assert pipeline.runner.commands("apt-get", "install") == []
        assert pipeline.store.load_checksums(BASELINE) == {}
        assert pipeline.store.read_last_sync() is None
        assert pipeline.store.read_snapshot_pointer() == (report.snapshot, False)
        assert pipeline.store.read_lock_pid() is None

    def test_missing_config_path(self, pipeline, repo_dir, populated):
        """CONFIG_PATH must exist in the checkout."""
        pipeline.config = load_config_from_dict(
            {
                "CONFIG_REPO_URL": "https://git.example.com/infra.git",
                "CONFIG_PATH": "does/not/exist",
                "CONFIG_REPO_DIR": repo_dir,
            }
        )
        report = pipeline.run()
        assert report.exit_code == ExitCode.CONFIG
        assert pipeline.store.read_lock_pid() is None

    def test_git_failure(self, pipeline, populated):
        """No usable checkout maps to the git exit code."""

        def fail():
            raise GitSyncError("Git clone failed and no cached repository exists")

        pipeline.repository.on_sync = fail
        report = pipeline.run()
        assert report.exit_code == ExitCode.GIT
        assert not os.path.exists(populated)

    def test_snapshot_failure_is_not_fatal(self, pipeline, populated, tmp_path):
        """A sync proceeds without a snapshot when the backend fails."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        broken = pipeline.snapshots(backups_dir=str(blocker / "backups"))
        report = pipeline.run(snapshots=broken)
        assert report.exit_code == ExitCode.OK
        assert report.snapshot is None
        assert read(populated) == "welcome v1\n"

    def test_script_without_shebang(self, pipeline, configs_dir, populated, tmp_path):
        """An executable script with no interpreter line still runs."""
        out = tmp_path / "plain.txt"
        write(os.path.join(configs_dir, "scripts", "20-plain"), f"echo hi > {out}\n", 0o755)
        report = pipeline.run()
        assert report.exit_code == ExitCode.OK
        assert report.scripts.executed == ["10-setup.sh", "20-plain"]
        assert read(str(out)) == "hi\n"

    def test_unusable_btrfs_snapshot_dir_is_not_fatal(self, pipeline, populated, tmp_path):
        """A BTRFS snapshot directory that cannot be created only costs the snapshot."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        btrfs_runner = FakeRunner(available=["btrfs", "findmnt"])
        btrfs_runner.on("findmnt", stdout="btrfs\n")
        registry = BackendRegistry(fallback=FileBackend(pipeline.store, str(tmp_path / "b")))
        registry.register(BtrfsBackend(btrfs_runner, snap_dir=str(blocker / "snaps")))
        snapshots = SnapshotManager(registry, pipeline.store, clock=pipeline.clock)

        report = pipeline.run(snapshots=snapshots)
        assert report.exit_code == ExitCode.OK
        assert report.snapshot is None
        assert read(populated) == "welcome v1\n"
        assert btrfs_runner.commands("btrfs") == []

    def test_tagging_failure_is_not_fatal(self, pipeline, agent_paths, populated):
        """A snapshot that cannot be marked good does not fail the sync."""

        def block_status():
            name, _ = pipeline.store.read_snapshot_pointer()
            os.makedirs(os.path.join(agent_paths.backups_dir, name, "STATUS"))

        pipeline.repository.on_sync = block_status
        report = pipeline.run()
        assert report.exit_code == ExitCode.OK
        assert pipeline.store.read_snapshot_pointer() == (report.snapshot, True)
        assert pipeline.store.read_last_sync() is not None

    def test_snapshots_disabled(self, pipeline, repo_dir, populated, tmp_path):
        """SNAPSHOT_ENABLED=no skips the snapshot phase entirely."""
        pipeline.config = load_config_from_dict(
            {
                "CONFIG_REPO_URL": "https://git.example.com/infra.git",
                "CONFIG_PATH": "configs",
                "CONFIG_REPO_DIR": repo_dir,
                "SNAPSHOT_ENABLED": "no",
            }
        )
        disabled = SnapshotManager(
            BackendRegistry(fallback=FileBackend(pipeline.store, str(tmp_path / "b"))),
            pipeline.store,
            mode=pipeline.config.snapshot_enabled,
        )
        report = pipeline.run(snapshots=disabled)
        assert report.exit_code == ExitCode.OK
        assert report.snapshot is None
        assert not os.path.exists(tmp_path / "b")


class TestRollback:
    """Restoring the pre-sync snapshot."""

    def test_restore_undoes_a_sync(self, pipeline, populated, files_dir):
        """Rolling back brings back the file and the agent state."""
        pipeline.run()
        baseline = pipeline.store.load_checksums(BASELINE)

        source = os.path.join(files_dir, "motd")
        pipeline.repository.on_sync = lambda: write(source, "welcome v2\n")
        report = pipeline.run()
        assert read(populated) == "welcome v2\n"

        result = pipeline.snapshots().rollback(report.snapshot)
        assert result.status == RollbackStatus.RESTORED
        assert read(populated) == "welcome v1\n"
        assert pipeline.store.load_checksums(BASELINE) == baseline
