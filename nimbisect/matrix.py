# Copyright (c) Meta Platforms, Inc. and affiliates.

"""
Version matrix: probe the snippet against a list of toolchain identifiers.

The identifiers are probed in the order given, never re-sorted by release
date. The first passing identifier becomes `works` and the first failing one
becomes `fails`; both are "first encountered", so the pair may be two
non-adjacent releases and is not necessarily the newest regression. This is
intentional: re-sorting would change which window gets bisected.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Sequence

from nimbisect.logger import BisectLogger
from nimbisect.probe import Probe, ProbeResult
from nimbisect.switcher import ToolchainSwitcher


class VersionStatus(Enum):
    PASSED = "passed"
    FAILED = "failed"
    UNAVAILABLE = "unavailable"


@dataclass
class VersionResult:
    """
    Matrix entry for one toolchain identifier.

    Attributes:
        identifier: The toolchain identifier as given by the caller.
        status: Probe verdict, or UNAVAILABLE when it could not be selected.
        probe: The probe result, None when unavailable.
        started_at: When selection of this identifier began.
        finished_at: When its probe finished.
        intermediate_representation: Generated code, kept for failures only.
        ast: `dumpAstGen` output of the snippet, kept for failures only.
    """

    identifier: str
    status: VersionStatus
    probe: Optional[ProbeResult] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    intermediate_representation: str = ""
    ast: str = ""

    @property
    def success(self) -> bool:
        return self.status == VersionStatus.PASSED


@dataclass
class MatrixResult:
    """Outcome of a full matrix run."""

    works: Optional[str] = None
    fails: Optional[str] = None
    results: List[VersionResult] = field(default_factory=list)

    @property
    def has_regression_window(self) -> bool:
        """True when both a passing and a failing identifier were seen."""
        return self.works is not None and self.fails is not None


class VersionMatrixRunner:
    """
    Runs the probe under every identifier of the matrix.

    Example:
        >>> runner = VersionMatrixRunner(switcher, probe, logger)
        >>> result = runner.run(["devel", "2.0.0", "1.6.0"], snippet, "c")
        >>> result.works, result.fails
        ('1.6.0', 'devel')
    """

    def __init__(
        self,
        switcher: ToolchainSwitcher,
        probe: Probe,
        logger: BisectLogger,
        on_result: Optional[Callable[[VersionResult], None]] = None,
    ) -> None:
        self.switcher = switcher
        self.probe = probe
        self.logger = logger
        self.on_result = on_result

    def run(
        self,
        identifiers: Sequence[str],
        snippet: str,
        cmd: str,
    ) -> MatrixResult:
        """
        Probe every identifier in order.

        The loop never stops early; once both boundaries are known the
        remaining identifiers are still probed and reported.

        Args:
            identifiers: Toolchain identifiers in caller-chosen order.
            snippet: Nim source of the test program.
            cmd: User compile command.

        Returns:
            MatrixResult with the first passing/failing identifiers and one
            VersionResult per identifier.
        """
        matrix = MatrixResult()

        for identifier in identifiers:
            started_at = datetime.now()
            outcome = self.switcher.select(identifier)

            if not outcome.available:
                self.logger.warning(f"{identifier}: toolchain unavailable, skipped")
                entry = VersionResult(
                    identifier=identifier,
                    status=VersionStatus.UNAVAILABLE,
                    started_at=started_at,
                    finished_at=datetime.now(),
                )
            else:
                result = self.probe.run(snippet, cmd, context=outcome.context)
                status = VersionStatus.PASSED if result.success else VersionStatus.FAILED
                entry = VersionResult(
                    identifier=identifier,
                    status=status,
                    probe=result,
                    started_at=started_at,
                    finished_at=datetime.now(),
                )
                if not result.success:
                    entry.intermediate_representation = (
                        self.probe.intermediate_representation()
                    )
                    entry.ast = self.probe.ast_gen(snippet)

                if result.success and matrix.works is None:
                    matrix.works = identifier
                elif not result.success and matrix.fails is None:
                    matrix.fails = identifier

            self.logger.info(f"{identifier}: {entry.status.value.upper()}")
            matrix.results.append(entry)
            if self.on_result is not None:
                self.on_result(entry)

        if matrix.has_regression_window:
            self.logger.info(f"Works: {matrix.works}  Fails: {matrix.fails}")
        else:
            self.logger.info(
                "No regression window: "
                f"works={matrix.works}, fails={matrix.fails}"
            )
        return matrix
