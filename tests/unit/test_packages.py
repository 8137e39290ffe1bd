"""Tests for package lists, manager variants, custom installers and the installer."""

import json
import os

import pytest
from conftest import FakeRunner, apt_host_runner, write

from config_manager.core.commands import CommandResult, CommandRunner
from config_manager.exceptions import PackageListError
from config_manager.packages import (
    ApkManager,
    AptManager,
    CustomInstaller,
    CustomOutcome,
    CustomSpec,
    DnfManager,
    NpmManager,
    PackageInstaller,
    PipManager,
    parse_custom_line,
    parse_package_list,
    read_custom_list,
    read_package_list,
)
from config_manager.packages.custom import truncate_output
from config_manager.packages.parser import DEFAULT_CUSTOM_TIMEOUT


class TestParsePackageList:
    def test_comments_and_blanks(self):
        text = "# tools\ncurl\n\n  git  # vcs\njq\n"
        assert parse_package_list(text) == ["curl", "git", "jq"]

    def test_pins_kept_verbatim(self):
        text = "curl=7.88.1-10\nrequests==2.31\n@scope/tool@1.2\nuvicorn[standard]>=0.29\n"
        assert parse_package_list(text) == [
            "curl=7.88.1-10",
            "requests==2.31",
            "@scope/tool@1.2",
            "uvicorn[standard]>=0.29",
        ]

    def test_invalid_lines_skipped(self, caplog):
        assert parse_package_list("good\nbad;rm -rf /\nalso good\n") == ["good"]
        assert "Invalid characters" in caplog.text

    def test_double_equals_flagged_for_native(self, caplog):
        assert parse_package_list("curl==7.88\n", single_equals_pins=True) == ["curl==7.88"]
        assert "Multiple equals" in caplog.text

    def test_double_equals_fine_elsewhere(self, caplog):
        parse_package_list("requests==2.31\n")
        assert "Multiple equals" not in caplog.text

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(PackageListError):
            read_package_list(str(tmp_path / "missing.apt"))


class TestParseCustom:
    def test_pipe_in_command_is_rejected(self):
        # "|" separates fields, so an install pipeline needs a wrapper script.
        with pytest.raises(PackageListError):
            parse_custom_line("rustup|command -v rustup|curl -sSf https://sh.rustup.rs | sh")

    def test_default_timeout(self):
        spec = parse_custom_line("tool|command -v tool|install-tool")
        assert spec == CustomSpec("tool", "command -v tool", "install-tool")
        assert spec.timeout == DEFAULT_CUSTOM_TIMEOUT

    @pytest.mark.parametrize("raw", ["600", "timeout=600", " 600 "])
    def test_timeout_forms(self, raw):
        assert parse_custom_line(f"tool|check|install|{raw}").timeout == 600

    @pytest.mark.parametrize(
        "line",
        [
            "tool|check",
            "tool|check|install|60|extra",
            "|check|install",
            "tool||install",
            "tool|check|install|soon",
        ],
    )
    def test_invalid(self, line):
        with pytest.raises(PackageListError):
            parse_custom_line(line)

    def test_read_skips_bad_lines(self, tmp_path, caplog):
        path = write(
            str(tmp_path / "tools.custom"),
            "# custom tools\n"
            "bun|command -v bun|curl -fsSL https://bun.sh/install#x # installer\n"
            "broken line\n"
            "just|test -x /usr/local/bin/just|install-just|timeout=30\n",
        )
        specs = read_custom_list(path)
        assert [s.name for s in specs] == ["bun", "just"]
        assert specs[0].install == "curl -fsSL https://bun.sh/install#x"
        assert specs[1].timeout == 30
        assert f"{path}:3:" in caplog.text


class TestManagers:
    def test_apt(self):
        runner = FakeRunner(available=["apt-get"])
        runner.on("dpkg-query", stdout="install ok installed")
        apt = AptManager(runner)
        assert apt.available()
        assert apt.is_installed("curl=7.88.1-10")
        assert runner.calls[-1] == ["dpkg-query", "-W", "-f=${Status}", "curl"]
        apt.install(["curl", "git"])
        assert runner.calls[-1] == ["apt-get", "install", "-y", "-qq", "curl", "git"]

    def test_apt_not_installed(self):
        runner = FakeRunner()
        runner.on("dpkg-query", returncode=1, stderr="no packages found")
        assert not AptManager(runner).is_installed("curl")

    def test_apk(self):
        runner = FakeRunner(available=["apk"])
        apk = ApkManager(runner)
        assert apk.is_installed("curl=8.5.0-r0")
        assert runner.calls[-1] == ["apk", "info", "-e", "curl"]
        assert apk.refresh().args == ["apk", "update", "--quiet"]

    def test_dnf_falls_back_to_yum(self):
        runner = FakeRunner(available=["yum"])
        dnf = DnfManager(runner)
        assert dnf.available()
        dnf.install(["git"])
        assert runner.calls[-1] == ["yum", "install", "-y", "-q", "git"]

    @pytest.mark.parametrize(
        "package, base",
        [("pnpm", "pnpm"), ("pnpm@8", "pnpm"), ("@scope/tool", "@scope/tool"),
         ("@scope/tool@1.2", "@scope/tool")],
    )
    def test_npm_base_name(self, package, base):
        assert NpmManager(FakeRunner()).base_name(package) == base

    def test_npm_is_installed(self):
        runner = FakeRunner(available=["npm"])
        runner.on("npm", "list", stdout=json.dumps({"dependencies": {"pnpm": {}}}))
        npm = NpmManager(runner)
        assert npm.is_installed("pnpm@8")
        assert not npm.is_installed("yarn")

    @pytest.mark.parametrize(
        "package, base",
        [("requests", "requests"), ("requests==2.31", "requests"),
         ("uvicorn[standard]>=0.29", "uvicorn"), ("black~=24.0", "black")],
    )
    def test_pip_base_name(self, package, base):
        assert PipManager(FakeRunner()).base_name(package) == base

    def test_pip_break_system_packages(self, monkeypatch):
        monkeypatch.delenv("VIRTUAL_ENV", raising=False)
        runner = FakeRunner(available=["pip3"])
        runner.on("pip3", "install", "--help", stdout="  --break-system-packages  Allow ...")
        PipManager(runner).install(["requests"])
        assert runner.calls[-1] == [
            "pip3", "install", "--quiet", "--break-system-packages", "requests"
        ]

    def test_pip_in_virtualenv(self, monkeypatch):
        monkeypatch.setenv("VIRTUAL_ENV", "/opt/venv")
        runner = FakeRunner(available=["pip"])
        PipManager(runner).install(["requests"])
        assert runner.calls == [["pip", "install", "--quiet", "requests"]]


class TestCustomInstaller:
    SPEC = CustomSpec("tool", "check-tool", "install-tool", timeout=42)

    def _runner(self, checks):
        """Runner whose check command answers from ``checks`` in turn."""
        answers = iter(checks)
        runner = FakeRunner()
        runner.on(
            "bash", "-c", "check-tool",
            handler=lambda argv: CommandResult(argv, 0 if next(answers) else 1),
        )
        return runner

    def test_already_installed(self):
        runner = self._runner([True])
        assert CustomInstaller(runner).install(self.SPEC) == CustomOutcome.SKIPPED
        assert runner.commands("bash", "-c", "install-tool") == []

    def test_installed_and_verified(self):
        runner = self._runner([False, True])
        assert CustomInstaller(runner).install(self.SPEC) == CustomOutcome.INSTALLED

    def test_verification_fails(self):
        runner = self._runner([False, False])
        assert CustomInstaller(runner).install(self.SPEC) == CustomOutcome.FAILED

    def test_install_fails(self, caplog):
        runner = self._runner([False])
        runner.on("bash", "-c", "install-tool", returncode=2, stderr="download failed")
        assert CustomInstaller(runner).install(self.SPEC) == CustomOutcome.FAILED
        assert "download failed" in caplog.text

    def test_timeout(self, caplog):
        runner = self._runner([False])
        runner.on("bash", "-c", "install-tool", returncode=124, timed_out=True)
        assert CustomInstaller(runner).install(self.SPEC) == CustomOutcome.FAILED
        assert "timed out after 42s" in caplog.text

    def test_real_commands(self, tmp_path):
        marker = tmp_path / "installed"
        spec = CustomSpec("touch", f"test -f {marker}", f"touch {marker}", timeout=10)
        installer = CustomInstaller()
        assert installer.install(spec) == CustomOutcome.INSTALLED
        assert installer.install(spec) == CustomOutcome.SKIPPED

    def test_truncate_output(self):
        assert truncate_output("a\nb\n") == ["a", "b"]
        lines = truncate_output("\n".join(str(i) for i in range(30)))
        assert lines[:5] == ["0", "1", "2", "3", "4"]
        assert "30 lines total" in lines[5]
        assert lines[-1] == "29"
        assert len(lines) == 11


# ── Installer ────────────────────────────────────────────────────────────────


@pytest.fixture
def packages_dir(configs_dir):
    return os.path.join(configs_dir, "packages")


class TestPackageInstaller:
    def test_installs_missing_in_one_batch(self, packages_dir):
        write(os.path.join(packages_dir, "base.apt"), "curl\ngit\njq\n")
        runner = apt_host_runner(installed=["git"])
        report = PackageInstaller("apt", runner).install(packages_dir)

        apt = report.managers["apt"]
        assert apt.skipped == ["git"]
        assert apt.installed == ["curl", "jq"]
        assert runner.commands("apt-get", "update") == [["apt-get", "update", "-qq"]]
        assert runner.commands("apt-get", "install") == [
            ["apt-get", "install", "-y", "-qq", "curl", "jq"]
        ]

    def test_second_run_installs_nothing(self, packages_dir):
        write(os.path.join(packages_dir, "base.apt"), "curl\n")
        runner = apt_host_runner()
        PackageInstaller("apt", runner).install(packages_dir)
        report = PackageInstaller("apt", runner).install(packages_dir)
        assert report.installed == 0
        assert report.skipped == 1
        assert len(runner.commands("apt-get", "install")) == 1

    def test_batch_failure_counts_every_package(self, packages_dir):
        write(os.path.join(packages_dir, "base.apt"), "curl\nnope\n")
        runner = apt_host_runner()
        runner.on("apt-get", "install", returncode=100, stderr="E: Unable to locate nope")
        report = PackageInstaller("apt", runner).install(packages_dir)
        assert report.managers["apt"].failed == ["curl", "nope"]
        assert report.installed == 0

    def test_refresh_failure_fails_lists(self, packages_dir):
        write(os.path.join(packages_dir, "base.apt"), "curl\n")
        runner = apt_host_runner()
        runner.on("apt-get", "update", returncode=100)
        report = PackageInstaller("apt", runner).install(packages_dir)
        assert report.managers["apt"].failed == ["curl"]
        assert runner.commands("apt-get", "install") == []

    def test_only_host_native_lists(self, packages_dir):
        write(os.path.join(packages_dir, "base.apt"), "curl\n")
        write(os.path.join(packages_dir, "base.apk"), "curl\n")
        write(os.path.join(packages_dir, "base.dnf"), "curl\n")
        runner = FakeRunner(available=["apk", "apt-get", "dnf"])
        report = PackageInstaller("apk", runner).install(packages_dir)
        assert list(report.managers) == ["apk"]
        assert runner.commands("apt-get") == []
        assert runner.commands("dnf") == []

    def test_yum_host_reads_dnf_lists(self, packages_dir):
        write(os.path.join(packages_dir, "base.dnf"), "git\n")
        runner = FakeRunner(available=["yum"])
        runner.on("rpm", returncode=1)
        report = PackageInstaller("yum", runner).install(packages_dir)
        assert report.managers["dnf"].installed == ["git"]
        assert runner.commands("yum", "install") == [["yum", "install", "-y", "-q", "git"]]

    def test_unknown_host_still_runs_cross_distro(self, packages_dir, caplog):
        write(os.path.join(packages_dir, "base.apt"), "curl\n")
        write(os.path.join(packages_dir, "tools.npm"), "pnpm\n")
        runner = FakeRunner(available=["npm", "apt-get"])
        runner.on("npm", "list", stdout="{}")
        report = PackageInstaller("unknown", runner).install(packages_dir)
        assert list(report.managers) == ["npm"]
        assert report.managers["npm"].installed == ["pnpm"]
        assert "No supported native package manager" in caplog.text

    def test_missing_tool_skips_lists(self, packages_dir, caplog):
        write(os.path.join(packages_dir, "tools.pip"), "requests\n")
        report = PackageInstaller("apt", FakeRunner()).install(packages_dir)
        assert report.managers == {}
        assert "pip is not installed" in caplog.text

    def test_lists_processed_in_name_order(self, packages_dir):
        write(os.path.join(packages_dir, "20-extra.apt"), "jq\n")
        write(os.path.join(packages_dir, "10-base.apt"), "curl\n")
        runner = apt_host_runner()
        PackageInstaller("apt", runner).install(packages_dir)
        installs = runner.commands("apt-get", "install")
        assert [c[-1] for c in installs] == ["curl", "jq"]

    def test_custom_lists(self, packages_dir, tmp_path):
        marker = tmp_path / "tool-installed"
        write(
            os.path.join(packages_dir, "tools.custom"),
            f"tool|test -f {marker}|touch {marker}\nbroken|false|false\n",
        )
        report = PackageInstaller("apt", CommandRunner(), managers=[]).install(packages_dir)
        custom = report.managers["custom"]
        assert custom.installed == ["tool"]
        assert custom.failed == ["broken"]

    def test_missing_directory(self, tmp_path):
        report = PackageInstaller("apt", FakeRunner()).install(str(tmp_path / "none"))
        assert report.managers == {}
