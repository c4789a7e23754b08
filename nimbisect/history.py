# Copyright (c) Meta Platforms, Inc. and affiliates.

"""
Revision history of the Nim compiler.

Maps toolchain identifiers to commits, lists the commits between two of them
and reads per-commit metadata. The history lives in a single git checkout, so
reading metadata moves that checkout; nothing read from it is cached.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple

from nimbisect.config import NIM_DEFAULT_BRANCH, NIM_REPO_URL
from nimbisect.executor import ShellExecutor
from nimbisect.git_utils import RevisionHistoryError, ensure_git_repo, git
from nimbisect.logger import BisectLogger
from nimbisect.switcher import ToolchainSwitcher

# Release tags never move, so their commits are pinned here instead of being
# looked up in the checkout.
FIXED_RELEASE_REVISIONS: Mapping[str, str] = MappingProxyType(
    {
        "2.0.0": "a488067",
        "1.6.0": "727c637",
        "1.4.0": "018ae96",
        "1.2.0": "7e83adf",
        "1.0.0": "f7a8fc4",
        "0.20.2": "88a0edb",
    }
)

MOVING_IDENTIFIERS = ("devel", "stable")

_SEMVER = re.compile(r"^\d+\.\d+\.\d+$")


@dataclass(frozen=True)
class RevisionMetadata:
    """
    Metadata of one commit.

    Attributes:
        revision: Short commit hash.
        author: Author name, lowercased.
        message: Full commit message.
        timestamp: Author date as printed by `git log --pretty=%ai`.
        changed_files: Paths touched by the commit.
    """

    revision: str
    author: str
    message: str
    timestamp: str
    changed_files: Tuple[str, ...]


def parse_git_hash(version_output: str) -> Optional[str]:
    """Extract the `git hash:` value from `nim --version` output."""
    for line in version_output.lower().splitlines():
        line = line.strip()
        if line.startswith("git hash:"):
            value = line[len("git hash:"):].strip()
            return value or None
    return None


class RevisionHistory:
    """
    Revision lookups against a checkout of nim-lang/Nim.

    Example:
        >>> history = RevisionHistory(Path("./Nim"), switcher, executor, logger)
        >>> good = history.resolve("1.6.0")
        >>> bad = history.resolve("devel")
        >>> window = history.between(good, bad)  # newest first
        >>> history.metadata(window[0]).author
        'araq'
    """

    def __init__(
        self,
        nim_dir: Path,
        switcher: ToolchainSwitcher,
        executor: ShellExecutor,
        logger: BisectLogger,
        repo_url: str = NIM_REPO_URL,
        branch: str = NIM_DEFAULT_BRANCH,
    ) -> None:
        """
        Initialize the history.

        Args:
            nim_dir: Location of the Nim checkout (cloned on first use).
            switcher: Used to resolve moving identifiers.
            executor: ShellExecutor used for git and nim.
            logger: BisectLogger instance for logging.
            repo_url: Repository to clone from.
            branch: Branch checked out after cloning.
        """
        self.nim_dir = Path(nim_dir)
        self.switcher = switcher
        self.executor = executor
        self.logger = logger
        self.repo_url = repo_url
        self.branch = branch
        self._checkout_ready = False

    def ensure_checkout(self) -> None:
        """
        Clone and verify the checkout once per run.

        Raises:
            RevisionHistoryError: If the checkout cannot be prepared.
        """
        if self._checkout_ready:
            return
        ensure_git_repo(
            repo_dir=self.nim_dir,
            repo_url=self.repo_url,
            branch=self.branch,
            executor=self.executor,
            logger=self.logger,
        )
        self._checkout_ready = True

    def _git(self, *args: str):
        self.ensure_checkout()
        return self.executor.run_command(git(*args), cwd=str(self.nim_dir))

    def resolve(self, identifier: str) -> Optional[str]:
        """
        Map a toolchain identifier to a commit hash.

        Fixed releases come from FIXED_RELEASE_REVISIONS without touching the
        toolchain. Moving identifiers are activated and the toolchain reports
        its own commit. Other `x.y.z` releases are looked up as `vx.y.z` tags.

        Args:
            identifier: Release, moving target or tag name.

        Returns:
            Lowercased commit hash, or None if it cannot be resolved,
            including when the checkout cannot be prepared.
        """
        identifier = identifier.strip().lower()

        if identifier in FIXED_RELEASE_REVISIONS:
            return FIXED_RELEASE_REVISIONS[identifier]

        if identifier in MOVING_IDENTIFIERS:
            return self._resolve_moving(identifier)

        if _SEMVER.match(identifier):
            try:
                result = self._git(
                    "rev-parse", "--short", f"v{identifier}^{{commit}}"
                )
            except RevisionHistoryError as e:
                self.logger.warning(f"Cannot resolve v{identifier}: {e}")
                return None
            if result.success and result.stdout.strip():
                return result.stdout.strip().lower()
            self.logger.warning(f"Tag v{identifier} not found in Nim history")
            return None

        self.logger.warning(f"Cannot resolve toolchain identifier: {identifier}")
        return None

    def _resolve_moving(self, identifier: str) -> Optional[str]:
        outcome = self.switcher.select(identifier)
        if not outcome.available:
            self.logger.warning(f"Cannot resolve {identifier}: toolchain unavailable")
            return None

        result = self.executor.run_command(["nim", "--version"])
        if not result.success:
            self.logger.warning(f"nim --version failed for {identifier}")
            return None

        revision = parse_git_hash(result.stdout)
        if revision is None:
            self.logger.warning(f"No git hash in nim --version for {identifier}")
        return revision

    def between(self, old_revision: str, new_revision: str) -> List[str]:
        """
        List commits reachable from `new_revision` but not `old_revision`.

        Returns:
            Short hashes, newest first, exactly in `git log` order.
        """
        result = self._git(
            "log",
            "--pretty=format:%h",
            f"{old_revision}..{new_revision}",
        )
        if not result.success:
            self.logger.warning(
                f"git log {old_revision}..{new_revision} failed: {result.stderr.strip()}"
            )
            return []
        return [line.strip().lower() for line in result.stdout.splitlines() if line.strip()]

    def metadata(self, revision: str) -> RevisionMetadata:
        """
        Check out `revision` and read its metadata.

        The checkout is left at `revision`.

        Raises:
            RevisionHistoryError: If the revision cannot be checked out.
        """
        revision = revision.lstrip("#")
        result = self._git("checkout", revision)
        if not result.success:
            raise RevisionHistoryError(
                f"Failed to checkout {revision}: {result.stderr.strip()}"
            )

        author = self._git("log", "-1", "--pretty=format:%an").stdout.strip().lower()
        message = self._git("log", "-1", "--pretty=%B").stdout.strip()
        timestamp = self._git("log", "-1", "--pretty=format:%ai").stdout.strip()
        files = self._git("diff-tree", "--no-commit-id", "--name-only", "-r", "HEAD")
        changed_files = tuple(
            line.strip() for line in files.stdout.splitlines() if line.strip()
        )

        return RevisionMetadata(
            revision=revision,
            author=author,
            message=message,
            timestamp=timestamp,
            changed_files=changed_files,
        )
