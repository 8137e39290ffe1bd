"""Tests for host environment detection."""

import pwd

from config_manager.core.environment import (
    HostEnvironment,
    detect_environment,
    detect_os,
    detect_package_manager,
    detect_user,
    parse_os_release,
)


def _entry(name, uid, shell="/bin/bash"):
    return pwd.struct_passwd((name, "x", uid, uid, "", f"/home/{name}", shell))


class TestDetectOs:
    def test_parse_strips_quotes(self):
        info = parse_os_release('ID="ubuntu"\nVERSION_ID="24.04"\n# comment\n')
        assert info == {"ID": "ubuntu", "VERSION_ID": "24.04"}

    def test_known_distribution(self, tmp_path):
        path = tmp_path / "os-release"
        path.write_text('ID=alpine\nVERSION_ID=3.20.0\n')
        assert detect_os(str(path)) == ("alpine", "3.20.0")

    def test_derivative_maps_through_id_like(self, tmp_path):
        path = tmp_path / "os-release"
        path.write_text('ID=linuxmint\nID_LIKE="ubuntu debian"\nVERSION_ID=22\n')
        assert detect_os(str(path)) == ("debian", "22")

    def test_missing_file(self, tmp_path, caplog):
        assert detect_os(str(tmp_path / "nope")) == ("unknown", "unknown")
        assert "Cannot detect OS" in caplog.text


class TestDetectUser:
    def test_override_wins(self):
        assert detect_user("alice", entries=[_entry("bob", 1000)]) == "alice"

    def test_first_login_user(self):
        entries = [
            _entry("root", 0),
            _entry("svc", 1001, "/usr/sbin/nologin"),
            _entry("nobody", 65534),
            _entry("dev", 1002),
        ]
        assert detect_user(entries=entries) == "dev"

    def test_home_directory_fallback(self, tmp_path):
        (tmp_path / "zed").mkdir()
        (tmp_path / "amy").mkdir()
        assert detect_user(entries=[], home_dir=str(tmp_path)) == "amy"

    def test_final_fallback(self, tmp_path):
        assert detect_user(entries=[], home_dir=str(tmp_path / "missing")) == "coder"


class TestDetectPackageManager:
    def test_priority(self):
        found = {"dnf", "yum", "apk"}
        assert detect_package_manager(lambda b: b if b in found else None) == "apk"

    def test_yum_only(self):
        assert detect_package_manager(lambda b: b if b == "yum" else None) == "yum"

    def test_none_found(self, caplog):
        assert detect_package_manager(lambda b: None) == "unknown"
        assert "No supported package manager" in caplog.text


class TestDetectEnvironment:
    def test_combines_facts(self, tmp_path):
        path = tmp_path / "os-release"
        path.write_text("ID=debian\nVERSION_ID=12\n")
        env = detect_environment(
            lambda b: b if b == "apt-get" else None,
            user_override="ops",
            first_run=False,
            os_release_path=str(path),
        )
        assert env == HostEnvironment("debian", "12", "ops", "apt", False)
