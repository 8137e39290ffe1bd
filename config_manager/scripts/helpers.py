"""
Script Helper Command
~~~~~~~~~~~~~~~~~~~~~

Small command-line toolbox exported to setup scripts as
``$CONFIG_MANAGER_HELPER``::

    $CONFIG_MANAGER_HELPER is-installed git
    $CONFIG_MANAGER_HELPER ensure-installed curl jq
    $CONFIG_MANAGER_HELPER log warn "something odd"
    $CONFIG_MANAGER_HELPER run-as-user npm install -g pnpm

Package installation goes through the manager named in
``CONFIG_MANAGER_PKG_MGR``; the target user comes from ``CONTAINER_USER``.
"""

from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Sequence

from config_manager.core.commands import CommandRunner

__all__ = ["main", "is_installed", "ensure_installed", "run_as_user", "install_argv"]

_LEVELS = ("debug", "info", "ok", "warn", "error")
_USER_PATH = "/usr/local/bin:/usr/bin:/bin:/usr/local/sbin:/usr/sbin:/sbin"


def install_argv(manager: str, packages: Sequence[str]) -> list[list[str]]:
    """
    Commands that install ``packages`` with the native ``manager``.

    Returns an empty list for an unsupported manager.
    """
    pkgs = list(packages)
    if manager == "apt":
        return [
            ["apt-get", "update", "-qq"],
            ["apt-get", "install", "-y", "-qq", *pkgs],
        ]
    if manager == "apk":
        return [["apk", "add", "--quiet", *pkgs]]
    if manager in ("dnf", "yum"):
        return [[manager, "install", "-y", "-q", *pkgs]]
    return []


def is_installed(command: str, runner: CommandRunner | None = None) -> bool:
    return (runner or CommandRunner()).which(command) is not None


def ensure_installed(
    packages: Sequence[str],
    manager: str,
    runner: CommandRunner | None = None,
) -> int:
    """
    Install whichever of ``packages`` has no command of the same name.

    Returns:
        0 on success, otherwise the failing command's exit code.
    """
    runner = runner or CommandRunner()
    missing = [p for p in packages if runner.which(p) is None]
    if not missing:
        return 0
    commands = install_argv(manager, missing)
    if not commands:
        print(f"[ERROR] Unsupported package manager: {manager}", file=sys.stderr)
        return 1
    env = dict(os.environ, DEBIAN_FRONTEND="noninteractive")
    print(f"[INFO] Installing: {' '.join(missing)}")
    for argv in commands:
        result = runner.run(argv, env=env)
        if not result.ok:
            print(result.output.rstrip(), file=sys.stderr)
            print(f"[ERROR] Failed to install: {' '.join(missing)}", file=sys.stderr)
            return result.returncode
    return 0


def user_argv(user: str, command: Sequence[str]) -> list[str]:
    """``sudo`` invocation running ``command`` with ``user``'s login environment."""
    return [
        "sudo",
        "-u",
        user,
        "env",
        f"PATH={_USER_PATH}",
        f"HOME=/home/{user}",
        f"USER={user}",
        *command,
    ]


def run_as_user(
    user: str, command: Sequence[str], runner: CommandRunner | None = None
) -> int:
    """Run ``command`` as ``user``, echoing its output."""
    result = (runner or CommandRunner()).run(user_argv(user, command))
    if result.stdout:
        sys.stdout.write(result.stdout)
    if result.stderr:
        sys.stderr.write(result.stderr)
    return result.returncode


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="config-manager-helper",
        description="Helpers available to config-manager setup scripts",
    )
    subparsers = parser.add_subparsers(dest="command")

    installed_parser = subparsers.add_parser(
        "is-installed", help="Exit 0 if a command is on PATH"
    )
    installed_parser.add_argument("name", help="Command name")

    ensure_parser = subparsers.add_parser(
        "ensure-installed", help="Install packages whose command is missing"
    )
    ensure_parser.add_argument("packages", nargs="+", help="Package names")

    log_parser = subparsers.add_parser("log", help="Write a levelled log line")
    log_parser.add_argument("level", choices=_LEVELS, help="Log level")
    log_parser.add_argument("message", nargs="+", help="Message words")

    user_parser = subparsers.add_parser(
        "run-as-user", help="Run a command as the container user"
    )
    user_parser.add_argument("argv", nargs=argparse.REMAINDER, help="Command and arguments")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Helper entry point; returns the exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "is-installed":
        return 0 if is_installed(args.name) else 1
    if args.command == "ensure-installed":
        manager = os.environ.get("CONFIG_MANAGER_PKG_MGR", "unknown")
        return ensure_installed(args.packages, manager)
    if args.command == "log":
        stream = sys.stderr if args.level in ("warn", "error") else sys.stdout
        print(f"[{args.level.upper()}] {' '.join(args.message)}", file=stream)
        return 0
    if args.command == "run-as-user":
        if not args.argv:
            parser.error("run-as-user needs a command")
        user = os.environ.get("CONTAINER_USER")
        if not user:
            print("[ERROR] CONTAINER_USER is not set", file=sys.stderr)
            return 1
        return run_as_user(user, args.argv)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
