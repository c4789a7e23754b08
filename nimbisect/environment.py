# Copyright (c) Meta Platforms, Inc. and affiliates.

"""
Environment Manager for nimbisect.

Checks the host tools a bisect run relies on (choosenim, nim, git, the C
compiler, valgrind, node) and prepares the Nim history checkout ahead of a
run, so the first bisect does not pay for the clone.

Usage:
    nimbisect env
    nimbisect env --setup --nim-dir ./Nim
"""

from pathlib import Path
from typing import Dict, List, Optional, Tuple

from nimbisect.config import NIM_DEFAULT_BRANCH, NIM_REPO_URL
from nimbisect.executor import ShellExecutor
from nimbisect.git_utils import ensure_git_repo, verify_git_repo
from nimbisect.logger import BisectLogger


class EnvironmentSetupError(RuntimeError):
    """Raised when a required tool is missing."""

    pass


# (name, command, prefix stripped from the first output line)
HOST_TOOLS: List[Tuple[str, List[str], str]] = [
    ("GCC", ["gcc", "--version"], "gcc"),
    ("LibC", ["ldd", "--version"], "ldd"),
    ("Valgrind", ["valgrind", "--version"], "valgrind-"),
    ("NodeJS", ["node", "--version"], "v"),
    ("Linux", ["uname", "--kernel-release"], ""),
    ("Git", ["git", "--version"], "git version"),
    ("choosenim", ["choosenim", "--version"], "choosenim"),
    ("Nim", ["nim", "--version"], ""),
]


class EnvironmentManager:
    """
    Manages the environment for bisect runs.

    Example:
        >>> logger = BisectLogger("./bisect_logs")
        >>> manager = EnvironmentManager(Path("./Nim"), logger)
        >>> manager.ensure_environment()
    """

    def __init__(self, nim_dir: Path, logger: BisectLogger) -> None:
        """
        Initialize EnvironmentManager.

        Args:
            nim_dir: Directory where the Nim repository is (or will be) cloned.
            logger: BisectLogger instance for logging.
        """
        self.nim_dir = Path(nim_dir)
        self.logger = logger
        self.executor = ShellExecutor(self.logger)

    def _first_line(self, cmd: List[str], prefix: str) -> Optional[str]:
        result = self.executor.run_command(cmd)
        if not result.success:
            return None
        lines = result.stdout.strip().splitlines()
        if not lines:
            return None
        line = lines[0].strip()
        if prefix and line.lower().startswith(prefix.lower()):
            line = line[len(prefix):]
        return line.strip()

    def host_tool_versions(self) -> Dict[str, Optional[str]]:
        """
        Report host tool versions.

        Returns:
            Mapping of tool name to its version line, None if missing.
        """
        return {
            name: self._first_line(cmd, prefix) for name, cmd, prefix in HOST_TOOLS
        }

    def check_environment_status(self) -> Dict[str, bool]:
        """
        Check environment status (for diagnostics).

        Returns:
            Dictionary containing:
            - nim_repo_exists: Whether the Nim directory exists
            - nim_repo_is_valid: Whether it's a valid git repo
            - choosenim_available: Whether choosenim runs
            - git_available: Whether git runs
        """
        status: Dict[str, bool] = {}
        status["nim_repo_exists"] = self.nim_dir.exists()
        if status["nim_repo_exists"]:
            is_valid, _ = verify_git_repo(self.nim_dir, self.executor)
            status["nim_repo_is_valid"] = is_valid
        else:
            status["nim_repo_is_valid"] = False

        status["choosenim_available"] = self.executor.run_command(
            ["choosenim", "--version"]
        ).success
        status["git_available"] = self.executor.run_command(
            ["git", "--version"]
        ).success
        return status

    def ensure_environment(self) -> None:
        """
        Verify required tools and clone the Nim repository if needed.

        Raises:
            EnvironmentSetupError: If choosenim or git is missing.
            RevisionHistoryError: If the Nim repository cannot be cloned.
        """
        self.logger.info("=" * 60)
        self.logger.info("Setting up environment...")
        self.logger.info("=" * 60)

        status = self.check_environment_status()
        missing = [
            name
            for name, key in (("choosenim", "choosenim_available"), ("git", "git_available"))
            if not status[key]
        ]
        if missing:
            raise EnvironmentSetupError(
                f"Required tools not found: {', '.join(missing)}. "
                "Install choosenim from https://github.com/nim-lang/choosenim"
            )

        ensure_git_repo(
            repo_dir=self.nim_dir,
            repo_url=NIM_REPO_URL,
            branch=NIM_DEFAULT_BRANCH,
            executor=self.executor,
            logger=self.logger,
        )
        self.logger.info(f"Environment ready, Nim repo: {self.nim_dir}")
