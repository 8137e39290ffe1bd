"""Shared fixtures for config-manager tests."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime, timedelta

import pytest

from config_manager.config import load_config_from_dict
from config_manager.core.commands import CommandResult, CommandRunner
from config_manager.core.environment import HostEnvironment
from config_manager.core.repository import ConfigRepository
from config_manager.core.state import MemoryStateStore


class FakeRunner(CommandRunner):
    """
    Scripted stand-in for CommandRunner.

    ``run`` answers from registered prefix rules (latest rule wins) and
    records every call; unmatched commands succeed with no output.
    ``stream`` really runs the command so scripts can be exercised.
    """

    def __init__(self, available: Sequence[str] = ()) -> None:
        self.available = set(available)
        self.calls: list[list[str]] = []
        self.streamed: list[list[str]] = []
        self.stream_envs: list[dict[str, str]] = []
        self._rules: list[tuple[list[str], Callable[[list[str]], CommandResult]]] = []

    def on(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
        handler: Callable[[list[str]], CommandResult] | None = None,
    ) -> None:
        if handler is None:

            def handler(argv: list[str]) -> CommandResult:
                return CommandResult(argv, returncode, stdout, stderr, timed_out)

        self._rules.append((list(prefix), handler))

    def run(
        self,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        argv = [str(a) for a in args]
        self.calls.append(argv)
        for prefix, handler in reversed(self._rules):
            if argv[: len(prefix)] == prefix:
                return handler(argv)
        return CommandResult(argv, 0)

    def stream(
        self,
        args: Sequence[str],
        on_line: Callable[[str], None],
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> int:
        self.streamed.append([str(a) for a in args])
        self.stream_envs.append(dict(env or {}))
        return super().stream(args, on_line, env=env, cwd=cwd)

    def which(self, name: str) -> str | None:
        return f"/usr/bin/{name}" if name in self.available else None

    def commands(self, *prefix: str) -> list[list[str]]:
        """Recorded ``run`` calls starting with ``prefix``."""
        return [c for c in self.calls if c[: len(prefix)] == list(prefix)]


class LocalRepository(ConfigRepository):
    """A plain directory standing in for a git checkout."""

    def __init__(self, path: str, on_sync: Callable[[], None] | None = None) -> None:
        self._path = path
        self.on_sync = on_sync
        self.syncs = 0

    @property
    def path(self) -> str:
        return self._path

    def sync(self) -> bool:
        self.syncs += 1
        if self.on_sync is not None:
            self.on_sync()
        return True


class Ticker:
    """Clock that advances one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=1)
        return current


def write(path: str, content: str, mode: int | None = None) -> str:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        f.write(content)
    if mode is not None:
        os.chmod(path, mode)
    return path


def read(path: str) -> str:
    with open(path) as f:
        return f.read()


def apt_host_runner(installed: Sequence[str] = ()) -> FakeRunner:
    """FakeRunner for an apt host whose dpkg database is the ``installed`` set."""
    installed_set = set(installed)
    runner = FakeRunner(available=["apt-get"])

    def query(argv: list[str]) -> CommandResult:
        if argv[-1] in installed_set:
            return CommandResult(argv, 0, "install ok installed")
        return CommandResult(argv, 1, "", "no packages found")

    def install(argv: list[str]) -> CommandResult:
        installed_set.update(p.split("=", 1)[0] for p in argv[4:])
        return CommandResult(argv, 0)

    runner.on("dpkg-query", handler=query)
    runner.on("apt-get", "install", handler=install)
    return runner


def add_triplet(
    files_dir: str, name: str, content: str, target_dir: str, policy: str | None = "replace"
) -> str:
    """Write a ``files/`` triplet and return the target path."""
    write(os.path.join(files_dir, name), content)
    write(os.path.join(files_dir, f"{name}.path"), f"{target_dir}\n")
    if policy is not None:
        write(os.path.join(files_dir, f"{name}.policy"), f"{policy}\n")
    return os.path.join(target_dir, name)


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo configure_logging() so caplog keeps seeing records."""
    yield
    package_logger = logging.getLogger("config_manager")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def ticker() -> Ticker:
    return Ticker()


@pytest.fixture
def host() -> HostEnvironment:
    return HostEnvironment(
        os_id="debian",
        os_version="12",
        user="tester",
        package_manager="apt",
        first_run=True,
    )


@pytest.fixture
def repo_dir(tmp_path) -> str:
    """An empty checkout containing ``configs/{scripts,files,packages}``."""
    root = tmp_path / "repo"
    for sub in ("scripts", "files", "packages"):
        (root / "configs" / sub).mkdir(parents=True)
    return str(root)


@pytest.fixture
def configs_dir(repo_dir) -> str:
    return os.path.join(repo_dir, "configs")


@pytest.fixture
def target_root(tmp_path) -> str:
    """Stand-in for the container's filesystem root."""
    root = tmp_path / "root"
    root.mkdir()
    return str(root)


@pytest.fixture
def sync_config(repo_dir):
    return load_config_from_dict(
        {
            "CONFIG_REPO_URL": "https://git.example.com/infra.git",
            "CONFIG_PATH": "configs",
            "CONFIG_REPO_DIR": repo_dir,
            "SNAPSHOT_RETENTION_DAYS": 7,
        }
    )
