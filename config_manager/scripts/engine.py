"""
Script Execution Engine
~~~~~~~~~~~~~~~~~~~~~~~

Runs the setup scripts in ``scripts/`` one at a time, in byte order of
their file names (hence the ``00-``...``99-`` naming convention). Every
script gets the same structured environment and the helper command;
the first non-zero exit halts the chain.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import stat
import sys
import tempfile
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager

from config_manager import __version__
from config_manager.core.commands import CommandRunner
from config_manager.core.environment import HostEnvironment
from config_manager.core.models import ScriptReport

__all__ = ["ScriptEngine", "discover_scripts", "helper_command"]

logger = logging.getLogger(__name__)

HELPER_SCRIPT = "config-manager-helper"


def helper_command(override: str | None = None) -> str | None:
    """
    Executable scripts use to reach the helper.

    Order: configured override, then the installed console script.
    Returns None when neither exists; the engine then writes a wrapper
    for the current interpreter.
    """
    if override:
        return override
    return shutil.which(HELPER_SCRIPT)


@contextmanager
def _interpreter_helper() -> Iterator[str]:
    """A temporary one-file wrapper around ``python -m ...helpers``."""
    with tempfile.TemporaryDirectory(prefix="config-manager-") as tmp:
        path = os.path.join(tmp, HELPER_SCRIPT)
        with open(path, "w", encoding="utf-8") as f:
            f.write(
                "#!/bin/sh\n"
                f'exec {shlex.quote(sys.executable)} -m config_manager.scripts.helpers "$@"\n'
            )
        os.chmod(path, 0o755)
        yield path


def discover_scripts(scripts_dir: str) -> tuple[list[str], list[str]]:
    """
    Find scripts directly inside ``scripts_dir``.

    Returns:
        ``(scripts, skipped)``: regular files sorted by raw byte order of
        their names, and entries that are not regular files. Hidden
        files are ignored.
    """
    scripts, skipped = [], []
    try:
        names = os.listdir(scripts_dir)
    except FileNotFoundError:
        return scripts, skipped
    for name in sorted(names, key=os.fsencode):
        if name.startswith("."):
            continue
        if os.path.isfile(os.path.join(scripts_dir, name)):
            scripts.append(name)
        else:
            skipped.append(name)
    return scripts, skipped


class ScriptEngine:
    """
    Sequential runner for setup scripts.

    Args:
        runner: Command runner used to spawn each script.
        helper: Helper command exported as ``CONFIG_MANAGER_HELPER``.
        base_env: Environment inherited by scripts (defaults to ours).
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        helper: str | None = None,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self._runner = runner or CommandRunner()
        self._helper = helper_command(helper)
        self._base_env = dict(base_env if base_env is not None else os.environ)

    def build_env(
        self,
        host: HostEnvironment,
        configs_dir: str,
        log_path: str,
        helper: str | None = None,
    ) -> dict[str, str]:
        """The environment every script receives."""
        env = dict(self._base_env)
        env.update(
            {
                "CONTAINER_OS": host.os_id,
                "CONTAINER_OS_VERSION": host.os_version,
                "CONTAINER_USER": host.user,
                "CONFIG_MANAGER_PKG_MGR": host.package_manager,
                "CONFIG_MANAGER_FIRST_RUN": "true" if host.first_run else "false",
                "CONFIG_MANAGER_ROOT": configs_dir,
                "CONFIG_MANAGER_LOG": log_path,
                "CONFIG_MANAGER_VERSION": __version__,
                "CONFIG_MANAGER_HELPER": helper or self._helper or "",
            }
        )
        return env

    @staticmethod
    def _has_shebang(path: str) -> bool:
        try:
            with open(path, "rb") as f:
                return f.read(2) == b"#!"
        except OSError:
            return False

    @classmethod
    def _argv(cls, path: str) -> list[str]:
        """Exec a script directly only when it is executable and names its interpreter."""
        mode = os.stat(path).st_mode
        if path.endswith(".sh") or not mode & stat.S_IXUSR or not cls._has_shebang(path):
            return ["bash", path]
        return [path]

    @contextmanager
    def _helper_path(self) -> Iterator[str]:
        if self._helper:
            yield self._helper
        else:
            with _interpreter_helper() as path:
                yield path

    def execute(
        self,
        scripts_dir: str,
        host: HostEnvironment,
        configs_dir: str,
        log_path: str,
    ) -> ScriptReport:
        """
        Run every script in order, stopping at the first failure.

        Returns:
            A ScriptReport; ``failed_at`` names the failing script.
        """
        report = ScriptReport()
        scripts, report.skipped = discover_scripts(scripts_dir)
        for name in report.skipped:
            logger.warning("[Scripts] Not a regular file, skipping: %s", name)
        if not scripts:
            logger.info("[Scripts] No scripts to run in %s", scripts_dir)
            return report

        logger.info("[Scripts] Found %d script(s) to execute", len(scripts))
        with self._helper_path() as helper:
            env = self.build_env(host, configs_dir, log_path, helper)
            self._run_chain(scripts, scripts_dir, env, report)
        if report.ok:
            logger.info("[Scripts] Complete: executed %d", len(report.executed))
        return report

    def _run_chain(
        self,
        scripts: list[str],
        scripts_dir: str,
        env: dict[str, str],
        report: ScriptReport,
    ) -> None:
        for index, name in enumerate(scripts):
            path = os.path.join(scripts_dir, name)
            logger.info("[Scripts] Executing: %s", name)
            started = time.monotonic()
            code = self._runner.stream(
                self._argv(path),
                lambda line, _name=name: logger.info("[%s] %s", _name, line),
                env=env,
                cwd=scripts_dir,
            )
            elapsed = time.monotonic() - started
            if code != 0:
                report.failed_at = name
                report.exit_code = code
                logger.error(
                    "[Scripts] '%s' FAILED with exit code %d after %.1fs", name, code, elapsed
                )
                remaining = scripts[index + 1 :]
                if remaining:
                    logger.error("[Scripts] Chain halted; not run: %s", ", ".join(remaining))
                return
            report.executed.append(name)
            logger.info("[Scripts] '%s' completed in %.1fs", name, elapsed)
