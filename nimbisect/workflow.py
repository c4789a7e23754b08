# Copyright (c) Meta Platforms, Inc. and affiliates.

"""
Main workflow controller for nimbisect.

Runs the whole pipeline as one serial chain:
1. Version matrix: probe every configured toolchain identifier
2. Resolve: map the works/fails identifiers to commits
3. Bisect: narrow the commits between them to the breaking one

Every expected failure (untestable toolchain, unresolved identifier, no
regression window, inconclusive scan, a Nim checkout that cannot be cloned)
ends up in the BisectReport, so the matrix results are never lost. Other
unexpected errors propagate.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence

from nimbisect.config import BisectConfig
from nimbisect.executor import ShellExecutor
from nimbisect.fuzz import FuzzPrelude
from nimbisect.git_utils import RevisionHistoryError
from nimbisect.history import RevisionHistory
from nimbisect.logger import BisectLogger
from nimbisect.matrix import VersionMatrixRunner, VersionResult
from nimbisect.probe import Probe
from nimbisect.search import BisectionOutcome, BisectionSearch, RevisionProbe
from nimbisect.switcher import ToolchainSwitcher
from nimbisect.ui import BisectUI


class SkipReason(Enum):
    """Why the commit bisection did not run."""

    NO_REGRESSION_WINDOW = "no-regression-window"
    RESOLUTION_FAILURE = "resolution-failure"
    EMPTY_WINDOW = "empty-window"


@dataclass
class BisectReport:
    """
    Everything a bisect run produced.

    Attributes:
        per_version_results: One entry per matrix identifier, in probe order.
        outcome: Found/NotFound, or None when bisection was skipped.
        skip_reason: Why bisection was skipped, if it was.
        works: First passing identifier of the matrix.
        fails: First failing identifier of the matrix.
        works_revision: Commit `works` resolved to.
        fails_revision: Commit `fails` resolved to.
        window_size: Number of commits between the two boundaries.
        commits_tested: Commits probed during the bisection.
        started_at: When the run began.
        duration_seconds: Wall time of the whole run.
    """

    per_version_results: List[VersionResult] = field(default_factory=list)
    outcome: Optional[BisectionOutcome] = None
    skip_reason: Optional[SkipReason] = None
    works: Optional[str] = None
    fails: Optional[str] = None
    works_revision: Optional[str] = None
    fails_revision: Optional[str] = None
    window_size: int = 0
    commits_tested: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    duration_seconds: float = 0.0

    @property
    def commits_considered(self) -> int:
        """Matrix identifiers plus commits of the bisected window."""
        return len(self.per_version_results) + self.window_size

    @property
    def commits_per_second(self) -> float:
        if self.duration_seconds <= 0:
            return 0.0
        return self.commits_considered / self.duration_seconds


class BisectWorkflow:
    """
    Main workflow controller.

    Example:
        >>> config = BisectConfig(work_dir=Path("/tmp/work"))
        >>> workflow = BisectWorkflow(config)
        >>> report = workflow.run(snippet, "c --mm:orc")
        >>> if report.outcome and report.outcome.found:
        ...     print(report.outcome.breaking_revision)
    """

    def __init__(
        self,
        config: BisectConfig,
        logger: Optional[BisectLogger] = None,
        ui: Optional[BisectUI] = None,
        switcher: Optional[ToolchainSwitcher] = None,
        probe: Optional[Probe] = None,
        history: Optional[RevisionHistory] = None,
    ) -> None:
        """
        Initialize the workflow.

        Collaborators not passed in are built from `config`.

        Args:
            config: Run configuration.
            logger: BisectLogger; created in `config.log_dir` if omitted.
            ui: Optional TUI receiving progress updates.
            switcher: Toolchain switcher.
            probe: Snippet probe.
            history: Nim revision history.
        """
        self.config = config
        self.logger = logger or BisectLogger(config.log_dir)
        self.ui = ui
        self.executor = ShellExecutor(self.logger)
        self._tested = 0

        self.switcher = switcher or ToolchainSwitcher(
            self.executor,
            self.logger,
            max_attempts=config.select_attempts,
            timeout=config.select_timeout,
            source_date_epoch=config.source_date_epoch,
        )
        self.probe = probe or Probe(
            config.work_dir,
            self.executor,
            self.logger,
            prelude=FuzzPrelude(config.fuzz_seed) if config.fuzz else None,
            timeout=config.probe_timeout,
        )
        self.history = history or RevisionHistory(
            config.nim_dir,
            self.switcher,
            self.executor,
            self.logger,
        )

    def _progress(self, **kwargs) -> None:
        if self.ui is not None:
            self.ui.update_progress(**kwargs)

    def _on_version(self, entry: VersionResult) -> None:
        self._tested += 1
        self._progress(
            current_commit=entry.identifier,
            commits_tested=self._tested,
            status_message=f"Last: {entry.identifier} {entry.status.value}",
        )

    def _on_revision(self, record: RevisionProbe) -> None:
        verdict = {True: "passed", False: "failed", None: "untestable"}[record.passed]
        self._tested += 1
        self._progress(
            current_commit=record.revision,
            commits_tested=self._tested,
            status_message=f"Last: {record.revision} {verdict} ({record.phase})",
        )

    def run(
        self,
        snippet: str,
        cmd: str,
        identifiers: Optional[Sequence[str]] = None,
    ) -> BisectReport:
        """
        Execute the complete workflow.

        Args:
            snippet: Nim source of the test program.
            cmd: User compile command, e.g. "c -d:release".
            identifiers: Matrix identifiers; defaults to `config.versions`.

        Returns:
            BisectReport.
        """
        start = time.time()
        self._tested = 0
        report = BisectReport()
        identifiers = list(identifiers if identifiers is not None else self.config.versions)

        self.logger.info("=" * 60)
        self.logger.info("Phase 1: Version Matrix")
        self.logger.info("=" * 60)
        self._progress(phase="Version Matrix", phase_number=1, total_phases=2)

        runner = VersionMatrixRunner(
            self.switcher, self.probe, self.logger, on_result=self._on_version
        )
        matrix = runner.run(identifiers, snippet, cmd)
        report.per_version_results = matrix.results
        report.works = matrix.works
        report.fails = matrix.fails

        try:
            self._bisect(report, snippet, cmd)
        finally:
            report.duration_seconds = time.time() - start

        self.logger.info("=" * 60)
        self.logger.info(
            f"Done: {report.commits_considered} commits considered "
            f"in {report.duration_seconds:.1f}s"
        )
        self.logger.info("=" * 60)
        return report

    def _bisect(self, report: BisectReport, snippet: str, cmd: str) -> None:
        if not (report.works and report.fails):
            self.logger.warning(
                "works and fails not found, at least 1 working and 1 failing "
                "version are required to bisect commit-by-commit"
            )
            report.skip_reason = SkipReason.NO_REGRESSION_WINDOW
            return

        self.logger.info("=" * 60)
        self.logger.info("Phase 2: Commit Bisect")
        self.logger.info("=" * 60)
        self._progress(phase="Commit Bisect", phase_number=2)

        report.fails_revision = self.history.resolve(report.fails)
        report.works_revision = self.history.resolve(report.works)
        if report.fails_revision is None or report.works_revision is None:
            self.logger.warning(
                f"Cannot resolve commits for works={report.works} "
                f"({report.works_revision}) and fails={report.fails} "
                f"({report.fails_revision}), skipping bisect"
            )
            report.skip_reason = SkipReason.RESOLUTION_FAILURE
            return

        try:
            window = self.history.between(
                report.works_revision, report.fails_revision
            )
        except RevisionHistoryError as e:
            self.logger.warning(f"Cannot list commits, skipping bisect: {e}")
            report.skip_reason = SkipReason.RESOLUTION_FAILURE
            return
        report.window_size = len(window)
        if not window:
            self.logger.warning(
                f"No commits between {report.works_revision} and "
                f"{report.fails_revision}, skipping bisect"
            )
            report.skip_reason = SkipReason.EMPTY_WINDOW
            return

        search = BisectionSearch(
            self.switcher,
            self.probe,
            self.history,
            self.logger,
            coarse_window=self.config.coarse_window,
            assume_monotonic=self.config.assume_monotonic,
            on_probe=self._on_revision,
        )
        report.outcome = search.run(window, snippet, cmd)
        report.commits_tested = len(search.probes)


def bisect(
    identifiers: Sequence[str],
    snippet: str,
    cmd: str,
    config: Optional[BisectConfig] = None,
) -> BisectReport:
    """
    Run the matrix and, if it shows a regression, bisect the commit history.

    Args:
        identifiers: Toolchain identifiers, probed in this order.
        snippet: Nim source of the test program.
        cmd: User compile command.
        config: Run configuration; defaults are used if omitted.

    Returns:
        BisectReport.
    """
    config = config or BisectConfig()
    return BisectWorkflow(config).run(snippet, cmd, identifiers=identifiers)
