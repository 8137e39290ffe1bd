"""
External Command Runner
~~~~~~~~~~~~~~~~~~~~~~~

Package managers, snapshot tools and setup scripts are all invoked
through ``CommandRunner``; git access goes through GitPython instead.
Tests substitute a scripted fake.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

__all__ = ["CommandResult", "CommandRunner", "NOT_EXECUTABLE_EXIT_CODE", "TIMEOUT_EXIT_CODE"]

logger = logging.getLogger(__name__)

# Same code coreutils ``timeout`` uses.
TIMEOUT_EXIT_CODE = 124
NOT_EXECUTABLE_EXIT_CODE = 126
NOT_FOUND_EXIT_CODE = 127


@dataclass
class CommandResult:
    """Outcome of one external command."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        if self.stdout and self.stderr:
            return f"{self.stdout.rstrip()}\n{self.stderr}"
        return self.stdout or self.stderr


class CommandRunner:
    """Runs commands with ``subprocess`` and never raises on non-zero exit."""

    def run(
        self,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """
        Run a command to completion, capturing its output.

        A missing executable yields return code 127, one that cannot be
        exec'd yields 126 and a timeout yields 124 with ``timed_out`` set.
        """
        argv = [str(a) for a in args]
        logger.debug("Running: %s", " ".join(argv))
        try:
            proc = subprocess.run(
                argv,
                env=dict(env) if env is not None else None,
                cwd=cwd,
                timeout=timeout,
                capture_output=True,
                text=True,
                errors="replace",
                stdin=subprocess.DEVNULL,
            )
        except FileNotFoundError as exc:
            return CommandResult(argv, NOT_FOUND_EXIT_CODE, stderr=str(exc))
        except OSError as exc:
            return CommandResult(argv, NOT_EXECUTABLE_EXIT_CODE, stderr=str(exc))
        except subprocess.TimeoutExpired as exc:
            return CommandResult(
                argv,
                TIMEOUT_EXIT_CODE,
                stdout=_decode(exc.stdout),
                stderr=_decode(exc.stderr),
                timed_out=True,
            )
        return CommandResult(argv, proc.returncode, proc.stdout, proc.stderr)

    def stream(
        self,
        args: Sequence[str],
        on_line: Callable[[str], None],
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> int:
        """
        Run a command, passing each line of merged output to ``on_line``.

        Returns:
            The process exit code.
        """
        argv = [str(a) for a in args]
        logger.debug("Streaming: %s", " ".join(argv))
        try:
            proc = subprocess.Popen(
                argv,
                env=dict(env) if env is not None else None,
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
            )
        except FileNotFoundError as exc:
            on_line(str(exc))
            return NOT_FOUND_EXIT_CODE
        except OSError as exc:
            on_line(str(exc))
            return NOT_EXECUTABLE_EXIT_CODE
        assert proc.stdout is not None
        with proc.stdout:
            for line in proc.stdout:
                on_line(line.rstrip("\n"))
        return proc.wait()

    def which(self, name: str) -> str | None:
        """Locate an executable on PATH."""
        return shutil.which(name)


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data
