# Copyright (c) Meta Platforms, Inc. and affiliates.

"""
nimbisect: regression bisection for the Nim compiler.

Probes a snippet against a matrix of Nim releases and bisects the commit
history between the first passing and the first failing release.
"""

from nimbisect.config import BisectConfig
from nimbisect.executor import CommandResult, ShellExecutor
from nimbisect.history import RevisionHistory, RevisionMetadata
from nimbisect.logger import BisectLogger
from nimbisect.matrix import MatrixResult, VersionMatrixRunner, VersionResult
from nimbisect.probe import Probe, ProbeResult
from nimbisect.search import BisectionSearch, Found, NotFound
from nimbisect.switcher import SelectOutcome, ToolchainContext, ToolchainSwitcher
from nimbisect.workflow import BisectReport, BisectWorkflow, SkipReason, bisect

__all__ = [
    "BisectConfig",
    "BisectLogger",
    "BisectReport",
    "BisectWorkflow",
    "BisectionSearch",
    "CommandResult",
    "Found",
    "MatrixResult",
    "NotFound",
    "Probe",
    "ProbeResult",
    "RevisionHistory",
    "RevisionMetadata",
    "SelectOutcome",
    "ShellExecutor",
    "SkipReason",
    "ToolchainContext",
    "ToolchainSwitcher",
    "VersionMatrixRunner",
    "VersionResult",
    "bisect",
]
