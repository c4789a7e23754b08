# Copyright (c) Meta Platforms, Inc. and affiliates.

"""
Git utility functions for the Nim history checkout.

RevisionHistory and EnvironmentManager both need the same "clone if missing,
verify, put it on the default branch" routine; it lives here.
"""

from pathlib import Path
from typing import Tuple

from nimbisect.executor import ShellExecutor
from nimbisect.logger import BisectLogger


class RevisionHistoryError(RuntimeError):
    """Raised when the history checkout cannot be prepared."""

    pass


def git(*args: str) -> list:
    """Build a git command line that never prints detached-HEAD advice."""
    return ["git", "-c", "advice.detachedHead=false", *args]


def verify_git_repo(
    repo_dir: Path,
    executor: ShellExecutor,
) -> Tuple[bool, str]:
    """
    Verify a directory is a valid git repository.

    Args:
        repo_dir: Path to the repository directory.
        executor: ShellExecutor instance for running commands.

    Returns:
        Tuple of (is_valid, current_commit_hash).
        If not valid, current_commit_hash is empty string.
    """
    result = executor.run_command(
        ["git", "rev-parse", "HEAD"],
        cwd=str(repo_dir),
    )
    if result.success:
        return (True, result.stdout.strip())
    return (False, "")


def ensure_git_repo(
    repo_dir: Path,
    repo_url: str,
    branch: str,
    executor: ShellExecutor,
    logger: BisectLogger,
) -> str:
    """
    Clone or verify a git repository and check out `branch`.

    - If directory doesn't exist: git clone, then checkout `branch`
    - If directory exists but is not a valid git repo: raise
    - If directory exists and is valid: leave it where it is

    Args:
        repo_dir: Directory where the repo should be located.
        repo_url: URL to clone from.
        branch: Branch to check out after cloning.
        executor: ShellExecutor instance for running commands.
        logger: BisectLogger instance for logging.

    Returns:
        Current commit hash of the repository.

    Raises:
        RevisionHistoryError: If the repo is invalid or cloning fails.
    """
    if not repo_dir.exists():
        logger.info(f"Nim repo not found at {repo_dir}")
        logger.info(f"Cloning Nim repo from {repo_url}...")

        result = executor.run_command(["git", "clone", repo_url, str(repo_dir)])
        if not result.success:
            raise RevisionHistoryError(f"Failed to clone Nim repo: {result.stderr}")

        result = executor.run_command(git("checkout", branch), cwd=str(repo_dir))
        if not result.success:
            raise RevisionHistoryError(
                f"Failed to checkout {branch}: {result.stderr}"
            )
        logger.info("Nim repo cloned successfully")

    is_valid, current_commit = verify_git_repo(repo_dir, executor)

    if not is_valid:
        raise RevisionHistoryError(
            f"Nim directory exists but is not a valid git repository: {repo_dir}\n"
            f"Please remove it and retry: rm -rf {repo_dir}"
        )

    logger.info(f"Nim repo verified at: {repo_dir}")
    logger.info(f"Current Nim commit: {current_commit[:12]}")
    return current_commit
