"""
Configuration Repository
~~~~~~~~~~~~~~~~~~~~~~~~

Keeps a shallow clone of the configuration repository up to date with
GitPython. A clone is required once; after that, network failures
degrade to the cached checkout.
"""

from __future__ import annotations

import logging
import os
import shutil
from abc import ABC, abstractmethod

# A host without git must still import the agent; the missing binary
# surfaces as a clone or fetch failure instead.
os.environ.setdefault("GIT_PYTHON_REFRESH", "quiet")

from git import (  # noqa: E402
    GitCommandError,
    GitCommandNotFound,
    InvalidGitRepositoryError,
    NoSuchPathError,
    Repo,
)

from config_manager.exceptions import GitSyncError  # noqa: E402

__all__ = ["ConfigRepository", "GitRepository"]

logger = logging.getLogger(__name__)

_UPDATE_ERRORS = (
    GitCommandError,
    GitCommandNotFound,
    InvalidGitRepositoryError,
    NoSuchPathError,
    ValueError,
)


def _describe(exc: Exception) -> str:
    """Collapse GitPython's multi-line command errors to one line."""
    return " ".join(str(exc).split())


class ConfigRepository(ABC):
    """A local checkout that can be brought up to date."""

    @property
    @abstractmethod
    def path(self) -> str:
        """Root of the local checkout."""
        ...

    @abstractmethod
    def sync(self) -> bool:
        """
        Update the checkout.

        Returns:
            True if the checkout now matches the remote, False if the
            cached state is being used.

        Raises:
            GitSyncError: If there is no usable checkout at all.
        """
        ...

    def revision(self) -> str | None:
        return None


class GitRepository(ConfigRepository):
    """Shallow git checkout of one branch."""

    def __init__(self, url: str, branch: str, repo_dir: str) -> None:
        self.url = url
        self.branch = branch
        self.repo_dir = repo_dir

    @property
    def path(self) -> str:
        return self.repo_dir

    def has_checkout(self) -> bool:
        return os.path.isdir(os.path.join(self.repo_dir, ".git"))

    def sync(self) -> bool:
        logger.info("Syncing repository: %s (branch: %s)", self.url, self.branch)
        if not self.has_checkout():
            self._clone()
            return True

        try:
            repo = Repo(self.repo_dir)
            repo.remote("origin").fetch(self.branch, depth=1)
            repo.head.reset(f"origin/{self.branch}", index=True, working_tree=True)
        except _UPDATE_ERRORS as exc:
            logger.warning("Git update failed, using cached state: %s", _describe(exc))
            return False
        logger.info("Repository updated to %s", self.revision() or "unknown revision")
        return True

    def _clone(self) -> None:
        if os.path.isdir(self.repo_dir) and os.listdir(self.repo_dir):
            logger.warning("Removing non-git directory at %s before cloning", self.repo_dir)
            shutil.rmtree(self.repo_dir)
        parent = os.path.dirname(self.repo_dir.rstrip("/"))
        if parent:
            os.makedirs(parent, exist_ok=True)

        logger.info("Cloning repository for the first time")
        try:
            Repo.clone_from(self.url, self.repo_dir, branch=self.branch, depth=1)
        except (GitCommandError, GitCommandNotFound) as exc:
            raise GitSyncError(
                f"Git clone failed and no cached repository exists: {_describe(exc)}",
                details={"url": self.url, "branch": self.branch},
            ) from exc
        logger.info("Repository cloned successfully")

    def revision(self) -> str | None:
        """Abbreviated commit id of the checkout, if it has one."""
        try:
            return Repo(self.repo_dir).head.commit.hexsha[:7]
        except (InvalidGitRepositoryError, NoSuchPathError, ValueError):
            return None
