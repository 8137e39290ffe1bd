"""
Package Installer
~~~~~~~~~~~~~~~~~

Processes every package list in ``packages/``:

1. Native lists for the host's package manager (``.apt``, ``.apk``,
   ``.dnf``; yum hosts read ``.dnf``).
2. Cross-distro lists (``.npm``, ``.pip``) when the tool is present.
3. Custom installers (``.custom``).

Per manager the index is refreshed once, packages already installed are
filtered out by a live query, and the rest are installed in one batch.
Failures are counted per manager and never abort the sync.
"""

from __future__ import annotations

import glob
import logging
import os

from config_manager.core.commands import CommandRunner
from config_manager.core.models import PackageReport
from config_manager.exceptions import PackageListError
from config_manager.packages.custom import CustomInstaller, CustomOutcome
from config_manager.packages.managers import MANAGER_TYPES, PackageManager
from config_manager.packages.parser import read_custom_list, read_package_list

__all__ = ["PackageInstaller", "CUSTOM_MANAGER"]

logger = logging.getLogger(__name__)

CUSTOM_MANAGER = "custom"

# Detected host manager -> native list extension
_NATIVE_EXTENSIONS = {"apt": "apt", "apk": "apk", "dnf": "dnf", "yum": "dnf"}


def _lists(packages_dir: str, extension: str) -> list[str]:
    paths = glob.glob(os.path.join(glob.escape(packages_dir), f"*.{extension}"))
    return sorted((p for p in paths if os.path.isfile(p)), key=os.fsencode)


class PackageInstaller:
    """
    Installs declared packages with the right manager.

    Args:
        host_manager: Detected native manager (``apt``, ``apk``, ``dnf``,
            ``yum`` or ``unknown``).
        runner: Command runner shared by all managers.
        managers: Manager variants; the standard five by default.
    """

    def __init__(
        self,
        host_manager: str,
        runner: CommandRunner | None = None,
        managers: list[PackageManager] | None = None,
    ) -> None:
        runner = runner or CommandRunner()
        self.host_manager = host_manager
        self._managers = managers if managers is not None else [t(runner) for t in MANAGER_TYPES]
        self._custom = CustomInstaller(runner)

    def _selected(self) -> list[PackageManager]:
        native = _NATIVE_EXTENSIONS.get(self.host_manager)
        if native is None:
            logger.warning(
                "No supported native package manager detected (%s); skipping native lists",
                self.host_manager,
            )
        return [m for m in self._managers if not m.native or m.name == native]

    def install(self, packages_dir: str) -> PackageReport:
        report = PackageReport()
        if not os.path.isdir(packages_dir):
            logger.info("[Packages] No packages directory at %s", packages_dir)
            return report

        for manager in self._selected():
            lists = _lists(packages_dir, manager.name)
            if lists:
                self._install_manager(manager, lists, report)

        for path in _lists(packages_dir, CUSTOM_MANAGER):
            self._install_custom(path, report)

        logger.info(
            "[Packages] Complete: installed %d, skipped %d, failed %d",
            report.installed,
            report.skipped,
            report.failed,
        )
        if report.failed:
            logger.warning("[Packages] %d package(s) failed to install", report.failed)
        return report

    def _read(self, manager: PackageManager, path: str) -> list[str]:
        try:
            return read_package_list(path, manager.single_equals_pins)
        except PackageListError as exc:
            logger.error("[Packages] %s", exc)
            return []

    def _install_manager(
        self, manager: PackageManager, lists: list[str], report: PackageReport
    ) -> None:
        if not manager.available():
            logger.warning(
                "[Packages] %s is not installed; skipping .%s lists", manager.name, manager.name
            )
            return
        result = report.for_manager(manager.name)

        refreshed = manager.refresh()
        if refreshed is not None and not refreshed.ok:
            logger.error(
                "[Packages] %s index refresh failed; skipping all .%s lists: %s",
                manager.name,
                manager.name,
                refreshed.output.strip(),
            )
            for path in lists:
                result.failed.extend(self._read(manager, path))
            return

        for path in lists:
            packages = self._read(manager, path)
            logger.info(
                "[Packages] Processing %s (%d package(s))", os.path.basename(path), len(packages)
            )
            missing = []
            for package in packages:
                if manager.is_installed(package):
                    logger.info("  [SKIP] %s: already installed", package)
                    result.skipped.append(package)
                else:
                    missing.append(package)
            if not missing:
                continue

            logger.info("  Installing %d package(s): %s", len(missing), " ".join(missing))
            outcome = manager.install(missing)
            if outcome.ok:
                result.installed.extend(missing)
                logger.info("  [OK] %d package(s) installed", len(missing))
            else:
                result.failed.extend(missing)
                logger.error(
                    "  [FAIL] Batch install failed for %s (exit %d): %s",
                    os.path.basename(path),
                    outcome.returncode,
                    outcome.output.strip(),
                )

    def _install_custom(self, path: str, report: PackageReport) -> None:
        result = report.for_manager(CUSTOM_MANAGER)
        try:
            specs = read_custom_list(path)
        except PackageListError as exc:
            logger.error("[Packages] %s", exc)
            return
        logger.info("[Packages] Processing %s (%d tool(s))", os.path.basename(path), len(specs))
        for spec in specs:
            outcome = self._custom.install(spec)
            if outcome == CustomOutcome.INSTALLED:
                result.installed.append(spec.name)
            elif outcome == CustomOutcome.SKIPPED:
                result.skipped.append(spec.name)
            else:
                result.failed.append(spec.name)
