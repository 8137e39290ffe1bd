"""
config-manager CLI
~~~~~~~~~~~~~~~~~~

Command-line entry points:

- ``config-sync``: run one sync (invoked by the boot-time service)
- ``config-rollback``: list, show, status, restore and resolve
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from collections.abc import Sequence
from types import FrameType

from config_manager.config.loader import load_config
from config_manager.config.schema import AgentPaths, SyncConfig
from config_manager.conflicts.detector import ConflictDetector
from config_manager.core.commands import CommandRunner
from config_manager.core.lock import SyncLock
from config_manager.core.models import RollbackStatus
from config_manager.core.orchestrator import SyncOrchestrator
from config_manager.core.state import FileStateStore, StateStore
from config_manager.exceptions import (
    ConfigError,
    LockHeldError,
    RollbackError,
    SnapshotNotFoundError,
)
from config_manager.observability.logging import configure_logging
from config_manager.rollback.registry import BackendRegistry
from config_manager.rollback.snapshot_manager import SnapshotManager

__all__ = ["sync_main", "rollback_main"]

logger = logging.getLogger(__name__)

# config-rollback exit codes
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_FAILED = 3
EXIT_NOT_FOUND = 4


def _add_path_arguments(parser: argparse.ArgumentParser) -> None:
    defaults = AgentPaths()
    parser.add_argument(
        "--config",
        type=str,
        default=defaults.config_file,
        help=f"Path to the configuration file (default: {defaults.config_file})",
    )
    parser.add_argument(
        "--state-dir",
        type=str,
        default=defaults.state_dir,
        help=f"State directory (default: {defaults.state_dir})",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=defaults.log_dir,
        help=f"Log directory (default: {defaults.log_dir})",
    )
    parser.add_argument(
        "--lock-file",
        type=str,
        default=defaults.lock_file,
        help=f"Sync lock file (default: {defaults.lock_file})",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log debug output",
    )


def _paths(args: argparse.Namespace) -> AgentPaths:
    return AgentPaths(
        config_file=args.config,
        state_dir=args.state_dir,
        log_dir=args.log_dir,
        lock_file=args.lock_file,
    )


# ── config-sync ──────────────────────────────────────────────────────────────


def _terminate(signum: int, frame: FrameType | None) -> None:
    raise SystemExit(128 + signum)


def sync_main(argv: Sequence[str] | None = None) -> int:
    """Entry point of ``config-sync``; returns the process exit code."""
    parser = argparse.ArgumentParser(
        prog="config-sync",
        description="Synchronize this container with its configuration repository",
    )
    _add_path_arguments(parser)
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    args = parser.parse_args(argv)

    if args.version:
        from config_manager import __version__

        print(f"config-sync {__version__}")
        return EXIT_OK

    paths = _paths(args)
    configure_logging(paths.sync_log, args.verbose)
    # Turn SIGTERM into SystemExit so the lock is released on the way out.
    signal.signal(signal.SIGTERM, _terminate)

    report = SyncOrchestrator(paths).run()
    return int(report.exit_code)


# ── config-rollback ──────────────────────────────────────────────────────────


def _try_load_config(paths: AgentPaths) -> SyncConfig | None:
    try:
        return load_config(paths.config_file)
    except ConfigError as exc:
        logger.warning("Configuration unavailable (%s); using snapshot defaults", exc)
        return None


def _snapshot_manager(
    paths: AgentPaths, config: SyncConfig | None, store: StateStore
) -> SnapshotManager:
    runner = CommandRunner()
    if config is None:
        registry = BackendRegistry.default(store, paths.backups_dir, runner)
        return SnapshotManager(registry, store)
    registry = BackendRegistry.default(
        store, paths.backups_dir, runner, lvm_snapshot_size=config.lvm_snapshot_size
    )
    return SnapshotManager(
        registry,
        store,
        mode=config.snapshot_enabled,
        backend_choice=config.snapshot_backend,
        retention_days=config.snapshot_retention_days,
    )


def _confirm(prompt: str, assume_yes: bool) -> bool:
    if assume_yes:
        return True
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


class _RollbackCommands:
    """Implementations of the ``config-rollback`` subcommands."""

    def __init__(self, paths: AgentPaths, store: StateStore | None = None) -> None:
        self.paths = paths
        self.store = store or FileStateStore(paths.state_dir, paths.lock_file)
        self.config = _try_load_config(paths)
        self.manager = _snapshot_manager(paths, self.config, self.store)
        self.detector = ConflictDetector(self.store)

    def list(self, args: argparse.Namespace) -> int:
        if not self.manager.enabled:
            print("Snapshots are disabled.")
            return EXIT_OK
        backend = self.manager.backend
        snapshots = self.manager.list()
        print(f"Snapshot backend: {backend.name if backend else 'none'}")
        if not snapshots:
            print("No snapshots found.")
            return EXIT_OK
        print(f"{'NAME':<36} {'CREATED':<20} STATUS")
        for snap in reversed(snapshots):
            created = snap.created.astimezone().strftime("%Y-%m-%d %H:%M:%S")
            print(f"{snap.name:<36} {created:<20} {'good' if snap.good else ''}".rstrip())
        return EXIT_OK

    def show(self, args: argparse.Namespace) -> int:
        for line in self.manager.show(args.name):
            print(line)
        return EXIT_OK

    def status(self, args: argparse.Namespace) -> int:
        marker = self.detector.marker()
        latest = self.manager.latest()
        if marker is not None:
            print("Status: CONFLICT")
            print(f"  Detected:  {marker.detected_at}")
            print(f"  Conflicts: {marker.count}")
            for conflict in self.detector.conflicts():
                print(f"  {conflict.path}")
                print(f"    local:    {conflict.local or 'missing'}")
                print(f"    expected: {conflict.expected or 'missing'}")
                print(f"    incoming: {conflict.incoming or 'missing'}")
            if latest:
                print(f"  Rollback:  config-rollback restore {latest[0]}")
            print("  Resolve:   config-rollback resolve")
            return EXIT_OK

        print("Status: clean")
        if latest:
            name, good = latest
            print(f"  Last snapshot: {name}{' (good)' if good else ''}")
        else:
            print("  Last snapshot: none")
        print(f"  Last sync:     {self.store.read_last_sync() or 'never'}")
        print(f"  Tracked files: {len(self.store.load_managed_files())}")
        return EXIT_OK

    def restore(self, args: argparse.Namespace) -> int:
        if not _confirm(f"Roll back to snapshot {args.name}?", args.yes):
            print("Aborted.")
            return EXIT_USAGE
        with SyncLock(self.store, lock_path=self.paths.lock_file):
            result = self.manager.rollback(args.name)
            self.detector.clear_conflicts()
        print(f"Rollback {result.status}: {result.message}")
        if result.status != RollbackStatus.RESTORED:
            for number, step in enumerate(result.steps, start=1):
                print(f"  {number}. {step}")
        return EXIT_OK

    def resolve(self, args: argparse.Namespace) -> int:
        if self.detector.marker() is None:
            print("No unresolved conflicts.")
            return EXIT_OK
        if not _confirm("Accept the current files and clear the conflict?", args.yes):
            print("Aborted.")
            return EXIT_USAGE
        files_dir = None
        if self.config is not None:
            files_dir = os.path.join(self.config.configs_dir, "files")
        with SyncLock(self.store, lock_path=self.paths.lock_file):
            archived = self.detector.resolve(files_dir)
        print("Conflicts resolved; the next sync will proceed.")
        if archived:
            print(f"Conflict log archived to {archived}")
        return EXIT_OK


def _build_rollback_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="config-rollback",
        description="Inspect and roll back config-manager snapshots",
    )
    _add_path_arguments(parser)
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("list", help="List snapshots")

    show_parser = subparsers.add_parser("show", help="Show what a snapshot contains")
    show_parser.add_argument("name", help="Snapshot name")

    subparsers.add_parser("status", help="Show conflict and snapshot status")

    restore_parser = subparsers.add_parser("restore", help="Roll back to a snapshot")
    restore_parser.add_argument("name", help="Snapshot name")
    restore_parser.add_argument("-y", "--yes", action="store_true", help="Do not ask")

    resolve_parser = subparsers.add_parser(
        "resolve", help="Accept current files and clear the conflict marker"
    )
    resolve_parser.add_argument("-y", "--yes", action="store_true", help="Do not ask")
    return parser


def rollback_main(argv: Sequence[str] | None = None) -> int:
    """Entry point of ``config-rollback``; returns the process exit code."""
    parser = _build_rollback_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return EXIT_USAGE

    paths = _paths(args)
    configure_logging(paths.rollback_log, args.verbose)
    commands = _RollbackCommands(paths)
    handler = getattr(commands, args.command)
    try:
        return handler(args)
    except SnapshotNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_NOT_FOUND
    except LockHeldError as exc:
        print(exc, file=sys.stderr)
        return EXIT_ERROR
    except RollbackError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(rollback_main())
