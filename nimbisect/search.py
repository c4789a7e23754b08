# Copyright (c) Meta Platforms, Inc. and affiliates.

"""
Commit bisection between a known-good and a known-bad revision.

The window is newest-first (as `git log` prints it): failing revisions come
first, passing revisions last. The search runs in two phases:

1. Coarse halving while the window is larger than `coarse_window`. It
   requires a monotonic window, i.e. exactly one fail->pass transition in scan
   order. With several transitions it may keep the wrong half; pass
   `assume_monotonic=False` to skip halving and scan the whole window.
2. A linear scan. The first passing revision ends the scan and the last
   failing revision scanned before it is reported as the breaking commit. If
   the very first testable revision passes, that revision itself is reported.

Revisions whose toolchain cannot be installed are skipped: they are neither
a pass nor a fail and are never reported as the breaking commit, except as
the untouched candidates of a NotFound. A revision found untestable is not
selected again within the same search.
"""

import math
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Set, Tuple, Union

from nimbisect.git_utils import RevisionHistoryError
from nimbisect.history import RevisionHistory, RevisionMetadata
from nimbisect.logger import BisectLogger
from nimbisect.probe import Probe
from nimbisect.switcher import ToolchainSwitcher


@dataclass(frozen=True)
class Found:
    """
    The breaking revision was located.

    Attributes:
        breaking_revision: Short hash of the breaking commit.
        metadata: Author, message, date and files of that commit, None if
            the history checkout could not be read.
        candidates: The scanned window the commit was picked from.
    """

    breaking_revision: str
    metadata: Optional[RevisionMetadata]
    candidates: Tuple[str, ...]
    found: bool = field(default=True, init=False)


@dataclass(frozen=True)
class NotFound:
    """
    No revision of the scanned window passed.

    This happens when the toolchain cannot be rebuilt at every commit, not only
    when there is no regression. `remaining_candidates` is the scanned window.
    """

    remaining_candidates: Tuple[str, ...]
    found: bool = field(default=False, init=False)


BisectionOutcome = Union[Found, NotFound]


@dataclass(frozen=True)
class RevisionProbe:
    """One revision probed during the search; `passed` is None if untestable."""

    revision: str
    phase: str
    passed: Optional[bool]


class BisectionSearch:
    """
    Narrows a regression window down to one breaking revision.

    Example:
        >>> search = BisectionSearch(switcher, probe, history, logger)
        >>> window = history.between(works_revision, fails_revision)
        >>> outcome = search.run(window, snippet, "c")
        >>> if outcome.found:
        ...     print(outcome.breaking_revision, outcome.metadata.author)
    """

    COARSE_WINDOW = 10
    MAX_MIDPOINT_ATTEMPTS = 5

    def __init__(
        self,
        switcher: ToolchainSwitcher,
        probe: Probe,
        history: RevisionHistory,
        logger: BisectLogger,
        coarse_window: int = COARSE_WINDOW,
        assume_monotonic: bool = True,
        max_midpoint_attempts: int = MAX_MIDPOINT_ATTEMPTS,
        on_probe: Optional[Callable[[RevisionProbe], None]] = None,
    ) -> None:
        """
        Initialize the search.

        Args:
            switcher: Activates each probed revision.
            probe: Runs the snippet under the active revision.
            history: Reads metadata of the breaking revision.
            logger: BisectLogger instance for logging.
            coarse_window: Halving stops once the window has at most this many
                revisions.
            assume_monotonic: Whether coarse halving may be used.
            max_midpoint_attempts: Revisions tried around an untestable
                halving midpoint before halving gives up.
            on_probe: Called after every probed revision.
        """
        self.switcher = switcher
        self.probe = probe
        self.history = history
        self.logger = logger
        self.coarse_window = coarse_window
        self.assume_monotonic = assume_monotonic
        self.max_midpoint_attempts = max_midpoint_attempts
        self.on_probe = on_probe
        self.probes: List[RevisionProbe] = []
        self._untestable: Set[str] = set()

    def run(self, window: Sequence[str], snippet: str, cmd: str) -> BisectionOutcome:
        """
        Locate the breaking revision in `window`.

        Args:
            window: Revisions newest-first, from the failing boundary down to
                just after the passing boundary. Must not be empty.
            snippet: Nim source of the test program.
            cmd: User compile command.

        Returns:
            Found or NotFound.
        """
        if not window:
            raise ValueError("Bisection window must not be empty")

        self.probes = []
        self._untestable = set()
        candidates = list(window)
        self.logger.info(f"Bisecting {len(candidates)} commits")

        if self.assume_monotonic:
            candidates = self.narrow(candidates, snippet, cmd)
        else:
            self.logger.info("Monotonic window not assumed, scanning every commit")

        return self.scan(candidates, snippet, cmd)

    def narrow(self, window: List[str], snippet: str, cmd: str) -> List[str]:
        """
        Phase 1: halve the window until it has at most `coarse_window` commits.

        A passing midpoint keeps the newer half `window[:mid]`, a failing one
        keeps `window[mid:]`. An untestable midpoint is replaced by its nearest
        neighbours, up to `max_midpoint_attempts` revisions in total; if none
        of them is testable, halving stops early.
        """
        while len(window) > self.coarse_window:
            split, passed = self._split_point(window, snippet, cmd)
            if passed is None:
                self.logger.warning(
                    f"No testable midpoint, scanning {len(window)} commits linearly"
                )
                break
            window = window[:split] if passed else window[split:]
            self.logger.info(f"  {len(window)} commits left")
        return window

    def _split_point(
        self, window: List[str], snippet: str, cmd: str
    ) -> Tuple[int, Optional[bool]]:
        mid = math.ceil(len(window) / 2)
        for index in _around(mid, 1, len(window) - 1)[: self.max_midpoint_attempts]:
            passed = self._probe_revision(window[index], "halving", snippet, cmd)
            if passed is not None:
                return index, passed
        return mid, None

    def scan(self, window: List[str], snippet: str, cmd: str) -> BisectionOutcome:
        """
        Phase 2: probe each revision in order until one passes.
        """
        candidates = tuple(window)
        last_failed: Optional[str] = None

        for revision in candidates:
            passed = self._probe_revision(revision, "scan", snippet, cmd)
            if passed is None:
                continue
            if passed:
                breaking = last_failed if last_failed is not None else revision
                self.logger.info(f"Breaking commit: {breaking}")
                try:
                    metadata = self.history.metadata(breaking)
                except RevisionHistoryError as e:
                    self.logger.warning(f"Cannot read metadata of {breaking}: {e}")
                    metadata = None
                return Found(
                    breaking_revision=breaking,
                    metadata=metadata,
                    candidates=candidates,
                )
            last_failed = revision

        self.logger.warning(
            f"No passing commit among {len(candidates)} candidates, "
            "breaking commit not found"
        )
        return NotFound(remaining_candidates=candidates)

    def _probe_revision(
        self, revision: str, phase: str, snippet: str, cmd: str
    ) -> Optional[bool]:
        if revision in self._untestable:
            passed = None
        else:
            passed = self._select_and_probe(revision, snippet, cmd)

        record = RevisionProbe(revision=revision, phase=phase, passed=passed)
        self.probes.append(record)
        if self.on_probe is not None:
            self.on_probe(record)
        return passed

    def _select_and_probe(self, revision: str, snippet: str, cmd: str) -> Optional[bool]:
        outcome = self.switcher.select_revision(revision)
        if not outcome.available:
            self.logger.warning(f"Commit {revision} untestable, skipped")
            self._untestable.add(revision)
            passed = None
        else:
            passed = self.probe.run(snippet, cmd, context=outcome.context).success
        return passed


def _around(center: int, low: int, high: int) -> List[int]:
    """Indices in [low, high] ordered by distance from `center`, higher index first on ties."""
    indices = [center]
    for offset in range(1, high - low + 1):
        for index in (center + offset, center - offset):
            if low <= index <= high:
                indices.append(index)
    return indices
