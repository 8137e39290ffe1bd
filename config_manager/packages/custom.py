"""
Custom Installer
~~~~~~~~~~~~~~~~

Installs tools no package manager covers. For each ``CustomSpec``:
run the check command (success means already installed), else run the
install command under its timeout, then run the check again to verify.
"""

from __future__ import annotations

import logging
from enum import StrEnum

from config_manager.core.commands import CommandRunner
from config_manager.packages.parser import CustomSpec

__all__ = ["CustomInstaller", "CustomOutcome", "truncate_output"]

logger = logging.getLogger(__name__)

_OUTPUT_HEAD = 5
_OUTPUT_TAIL = 5
_COMMAND_DISPLAY = 100


class CustomOutcome(StrEnum):
    INSTALLED = "installed"
    SKIPPED = "skipped"
    FAILED = "failed"


def truncate_output(output: str) -> list[str]:
    """First and last five lines of long output, with a marker between."""
    lines = output.rstrip("\n").splitlines()
    if len(lines) <= _OUTPUT_HEAD + _OUTPUT_TAIL:
        return lines
    return [
        *lines[:_OUTPUT_HEAD],
        f"... ({len(lines)} lines total, middle truncated) ...",
        *lines[-_OUTPUT_TAIL:],
    ]


class CustomInstaller:
    """Runs check and install shell commands through ``bash -c``."""

    def __init__(self, runner: CommandRunner | None = None) -> None:
        self._runner = runner or CommandRunner()

    def _check(self, spec: CustomSpec) -> bool:
        return self._runner.run(["bash", "-c", spec.check]).ok

    def install(self, spec: CustomSpec) -> CustomOutcome:
        if self._check(spec):
            logger.info("  [SKIP] %s: already installed", spec.name)
            return CustomOutcome.SKIPPED

        command = spec.install
        if len(command) > _COMMAND_DISPLAY:
            command = command[: _COMMAND_DISPLAY - 3] + "..."
        logger.info("  [%s] Installing (timeout %ds): %s", spec.name, spec.timeout, command)

        result = self._runner.run(["bash", "-c", spec.install], timeout=spec.timeout)
        if result.timed_out:
            logger.error("  [%s] Installation timed out after %ds", spec.name, spec.timeout)
            return CustomOutcome.FAILED
        if not result.ok:
            for line in truncate_output(result.output):
                logger.error("  [%s] %s", spec.name, line)
            logger.error(
                "  [%s] Installation failed with exit code %d", spec.name, result.returncode
            )
            return CustomOutcome.FAILED
        for line in truncate_output(result.output):
            logger.debug("  [%s] %s", spec.name, line)

        if not self._check(spec):
            logger.error("  [%s] Installation completed but verification failed", spec.name)
            return CustomOutcome.FAILED
        logger.info("  [%s] Installed and verified", spec.name)
        return CustomOutcome.INSTALLED
