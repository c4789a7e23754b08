# Copyright (c) Meta Platforms, Inc. and affiliates.

"""
Toolchain switcher backed by choosenim.

There is exactly one active Nim toolchain per process. ToolchainSwitcher owns
that slot: selecting an identifier replaces whatever was active before, so
probe results obtained under the previous toolchain no longer describe the
current one. Each selection yields an explicit ToolchainContext (or an
"unavailable" outcome) that callers carry into the probes they run.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from nimbisect.executor import ShellExecutor
from nimbisect.logger import BisectLogger


@dataclass(frozen=True)
class ToolchainContext:
    """
    The toolchain made active by a successful selection.

    Attributes:
        identifier: Release name, moving target ("devel") or "#<hash>".
        attempts: Number of choosenim invocations it took.
        output: choosenim output of the successful attempt.
    """

    identifier: str
    attempts: int
    output: str = ""


@dataclass(frozen=True)
class SelectOutcome:
    """
    Result of ToolchainSwitcher.select.

    Unavailability is an ordinary outcome: the identifier is untestable and
    the caller moves on.
    """

    identifier: str
    available: bool
    attempts: int
    context: Optional[ToolchainContext] = None
    error: Optional[str] = None


def revision_identifier(revision: str) -> str:
    """choosenim installs a commit when it is spelled "#<hash>"."""
    return revision if revision.startswith("#") else f"#{revision}"


class ToolchainSwitcher:
    """
    Activates toolchain identifiers through `choosenim update`.

    Example:
        >>> switcher = ToolchainSwitcher(executor, logger)
        >>> outcome = switcher.select("2.0.0")
        >>> if not outcome.available:
        ...     print(f"{outcome.identifier} is untestable")
    """

    MAX_ATTEMPTS = 3

    def __init__(
        self,
        executor: ShellExecutor,
        logger: BisectLogger,
        max_attempts: int = MAX_ATTEMPTS,
        timeout: Optional[float] = None,
        source_date_epoch: Optional[int] = None,
    ) -> None:
        """
        Initialize the switcher.

        Args:
            executor: ShellExecutor used to run choosenim.
            logger: BisectLogger instance for logging.
            max_attempts: Total choosenim attempts per selection.
            timeout: Hard timeout in seconds for each attempt.
            source_date_epoch: Fixed SOURCE_DATE_EPOCH so every build of the
                run embeds the same timestamp.
        """
        self.executor = executor
        self.logger = logger
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.source_date_epoch = source_date_epoch
        self._active: Optional[ToolchainContext] = None

    @property
    def active(self) -> Optional[ToolchainContext]:
        """The currently active toolchain, None if unknown."""
        return self._active

    def _env(self) -> Dict[str, str]:
        env = {"CHOOSENIM_NO_ANALYTICS": "1"}
        if self.source_date_epoch is not None:
            env["SOURCE_DATE_EPOCH"] = str(self.source_date_epoch)
        return env

    def select(self, identifier: str) -> SelectOutcome:
        """
        Make `identifier` the sole active toolchain.

        Args:
            identifier: A release ("2.0.0"), a moving target ("devel",
                "stable") or a revision ("#a488067").

        Returns:
            SelectOutcome. After `max_attempts` consecutive failures the
            outcome is unavailable; this method never raises for tool failures.
        """
        cmd = [
            "choosenim",
            "--noColor",
            "--skipClean",
            "--yes",
            "update",
            identifier,
        ]

        # The slot is in an unknown state until an attempt succeeds.
        self._active = None
        last_error = ""
        for attempt in range(1, self.max_attempts + 1):
            self.logger.info(
                f"Selecting toolchain {identifier} "
                f"(attempt {attempt}/{self.max_attempts})"
            )
            result = self.executor.run_command(
                cmd,
                env=self._env(),
                timeout=self.timeout,
            )
            if result.success:
                context = ToolchainContext(
                    identifier=identifier,
                    attempts=attempt,
                    output=result.output.strip(),
                )
                self._active = context
                return SelectOutcome(
                    identifier=identifier,
                    available=True,
                    attempts=attempt,
                    context=context,
                )
            last_error = result.output.strip()
            self.logger.warning(
                f"choosenim failed for {identifier} "
                f"(exit code {result.exit_code})"
            )

        self.logger.warning(
            f"choosenim failed {self.max_attempts} times for {identifier}, giving up"
        )
        return SelectOutcome(
            identifier=identifier,
            available=False,
            attempts=self.max_attempts,
            error=last_error,
        )

    def select_revision(self, revision: str) -> SelectOutcome:
        """Select a single commit of the Nim history."""
        return self.select(revision_identifier(revision))
