# Copyright (c) Meta Platforms, Inc. and affiliates.

"""
Run configuration for nimbisect.

BisectConfig holds every knob a bisect run needs. It is built by the CLI
from argparse options and handed to BisectWorkflow, which derives all
component instances from it.
"""

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

# Probed in this order; the order decides which releases become the
# works/fails boundary pair, not their chronology.
DEFAULT_VERSIONS: Tuple[str, ...] = (
    "devel",
    "stable",
    "2.0.0",
    "1.6.0",
    "1.4.0",
    "1.2.0",
    "1.0.0",
    "0.20.2",
)

NIM_REPO_URL = "https://github.com/nim-lang/Nim.git"
NIM_DEFAULT_BRANCH = "devel"
NIM_COMMIT_URL = "https://github.com/nim-lang/Nim/commit/"


@dataclass
class BisectConfig:
    """
    Complete configuration of a bisect run.

    Attributes:
        work_dir: Directory where the snippet, nimcache and binary are written.
        nim_dir: Checkout of the Nim repository used for revision lookups.
        log_dir: Directory for module and command logs.
        versions: Toolchain identifiers probed by the version matrix, in order.
        select_attempts: Attempts per toolchain selection before giving up.
        coarse_window: Window size at or below which halving stops.
        select_timeout: Hard timeout in seconds for one choosenim call.
        probe_timeout: Hard timeout in seconds for one compile+run.
        fuzz: Prepend the fuzzing constants prelude to every snippet.
        fuzz_seed: Seed for the prelude; None picks a fresh one.
        assume_monotonic: Use coarse halving (single pass->fail transition).
        source_date_epoch: SOURCE_DATE_EPOCH exported to every choosenim call.
    """

    work_dir: Path = field(default_factory=Path.cwd)
    nim_dir: Optional[Path] = None
    log_dir: str = "./bisect_logs"
    versions: List[str] = field(default_factory=lambda: list(DEFAULT_VERSIONS))
    select_attempts: int = 3
    coarse_window: int = 10
    select_timeout: Optional[float] = None
    probe_timeout: Optional[float] = None
    fuzz: bool = True
    fuzz_seed: Optional[int] = None
    assume_monotonic: bool = True
    source_date_epoch: int = field(default_factory=lambda: int(time.time()))

    def __post_init__(self) -> None:
        self.work_dir = Path(self.work_dir).resolve()
        if self.nim_dir is None:
            self.nim_dir = self.work_dir / "Nim"
        else:
            self.nim_dir = Path(self.nim_dir).resolve()
        if self.select_attempts < 1:
            raise ValueError("select_attempts must be at least 1")
        if self.coarse_window < 1:
            raise ValueError("coarse_window must be at least 1")
