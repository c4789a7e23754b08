# Copyright (c) Meta Platforms, Inc. and affiliates.

"""Tests for BisectWorkflow (CPU-only, toolchain and history are faked)."""

import tempfile
import unittest
from pathlib import Path
from unittest.mock import call, MagicMock, patch

from nimbisect.config import BisectConfig
from nimbisect.git_utils import RevisionHistoryError
from nimbisect.history import RevisionHistory, RevisionMetadata
from nimbisect.search import Found, NotFound
from nimbisect.workflow import BisectReport, BisectWorkflow, SkipReason, bisect
from tests.fakes import command_result, FakeProbe, FakeSwitcher

REVISIONS = {"devel": "f00dfee", "2.0.0": "a488067"}


class BisectWorkflowTest(unittest.TestCase):
    """Tests for the matrix -> resolve -> bisect pipeline."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.config = BisectConfig(
            work_dir=Path(self._tmp.name),
            log_dir=str(Path(self._tmp.name) / "logs"),
            versions=["devel", "2.0.0"],
        )
        self.history = MagicMock()
        self.history.resolve.side_effect = REVISIONS.get
        self.history.between.return_value = ["c3c3c3c", "b2b2b2b", "a1a1a1a"]
        self.history.metadata.side_effect = lambda rev: RevisionMetadata(
            revision=rev,
            author="araq",
            message="refactoring",
            timestamp="2023-08-01 10:00:00 +0200",
            changed_files=("compiler/semexprs.nim",),
        )
        self.ui = MagicMock()

    def tearDown(self):
        self._tmp.cleanup()

    def _workflow(self, outcomes, unavailable=()):
        self.switcher = FakeSwitcher(unavailable)
        self.probe = FakeProbe(outcomes)
        return BisectWorkflow(
            self.config,
            logger=MagicMock(),
            ui=self.ui,
            switcher=self.switcher,
            probe=self.probe,
            history=self.history,
        )

    def test_found(self):
        workflow = self._workflow(
            {
                "devel": False,
                "2.0.0": True,
                "c3c3c3c": False,
                "b2b2b2b": True,
                "a1a1a1a": True,
            }
        )

        report = workflow.run("echo 1", "c")

        self.assertIsNone(report.skip_reason)
        self.assertIsInstance(report.outcome, Found)
        self.assertEqual(report.outcome.breaking_revision, "c3c3c3c")
        self.assertEqual(report.works, "2.0.0")
        self.assertEqual(report.fails, "devel")
        self.assertEqual(report.works_revision, "a488067")
        self.assertEqual(report.fails_revision, "f00dfee")
        self.assertEqual(report.window_size, 3)
        self.assertEqual(report.commits_tested, 2)
        self.assertEqual(report.commits_considered, 5)
        self.assertGreaterEqual(report.duration_seconds, 0)
        self.history.between.assert_called_once_with("a488067", "f00dfee")

    def test_fails_resolved_before_works(self):
        workflow = self._workflow(
            {"devel": False, "2.0.0": True, "c3c3c3c": True}
        )
        workflow.run("echo 1", "c")
        self.assertEqual(
            self.history.resolve.call_args_list, [call("devel"), call("2.0.0")]
        )

    def test_not_found(self):
        workflow = self._workflow(
            {
                "devel": False,
                "2.0.0": True,
                "c3c3c3c": False,
                "b2b2b2b": False,
                "a1a1a1a": False,
            }
        )

        report = workflow.run("echo 1", "c")

        self.assertIsInstance(report.outcome, NotFound)
        self.assertEqual(
            report.outcome.remaining_candidates, ("c3c3c3c", "b2b2b2b", "a1a1a1a")
        )

    def test_no_regression_window(self):
        workflow = self._workflow({"devel": True, "2.0.0": True})

        report = workflow.run("echo 1", "c")

        self.assertIsNone(report.outcome)
        self.assertEqual(report.skip_reason, SkipReason.NO_REGRESSION_WINDOW)
        self.assertEqual(len(report.per_version_results), 2)
        self.history.resolve.assert_not_called()

    def test_unavailable_boundary_is_no_window(self):
        workflow = self._workflow({"2.0.0": True}, unavailable=["devel"])
        report = workflow.run("echo 1", "c")
        self.assertEqual(report.skip_reason, SkipReason.NO_REGRESSION_WINDOW)

    def test_resolution_failure(self):
        self.history.resolve.side_effect = lambda identifier: None
        workflow = self._workflow({"devel": False, "2.0.0": True})

        report = workflow.run("echo 1", "c")

        self.assertEqual(report.skip_reason, SkipReason.RESOLUTION_FAILURE)
        self.history.between.assert_not_called()

    def test_unclonable_checkout_keeps_matrix(self):
        executor = MagicMock()
        executor.run_command.return_value = command_result(
            exit_code=128, stderr="fatal: unable to access github.com"
        )
        switcher = FakeSwitcher()
        self.history = RevisionHistory(
            Path(self._tmp.name) / "Nim", switcher, executor, MagicMock()
        )
        workflow = BisectWorkflow(
            self.config,
            logger=MagicMock(),
            switcher=switcher,
            probe=FakeProbe({"2.2.0": False, "2.0.0": True}),
            history=self.history,
        )

        report = workflow.run("echo 1", "c", identifiers=["2.2.0", "2.0.0"])

        self.assertEqual(report.skip_reason, SkipReason.RESOLUTION_FAILURE)
        self.assertIsNone(report.fails_revision)
        self.assertEqual(report.works_revision, "a488067")
        self.assertEqual(
            [r.identifier for r in report.per_version_results], ["2.2.0", "2.0.0"]
        )
        self.assertIsNone(report.outcome)

    def test_window_listing_failure_is_resolution_failure(self):
        self.history.between.side_effect = RevisionHistoryError(
            "Failed to clone Nim repo: could not resolve host"
        )
        workflow = self._workflow({"devel": False, "2.0.0": True})

        report = workflow.run("echo 1", "c")

        self.assertEqual(report.skip_reason, SkipReason.RESOLUTION_FAILURE)
        self.assertEqual(len(report.per_version_results), 2)
        self.assertEqual(report.window_size, 0)

    def test_metadata_failure_keeps_breaking_commit(self):
        self.history.metadata.side_effect = RevisionHistoryError("checkout failed")
        workflow = self._workflow(
            {"devel": False, "2.0.0": True, "c3c3c3c": False, "b2b2b2b": True}
        )

        report = workflow.run("echo 1", "c")

        self.assertTrue(report.outcome.found)
        self.assertEqual(report.outcome.breaking_revision, "c3c3c3c")
        self.assertIsNone(report.outcome.metadata)

    def test_empty_window(self):
        self.history.between.return_value = []
        workflow = self._workflow({"devel": False, "2.0.0": True})

        report = workflow.run("echo 1", "c")

        self.assertEqual(report.skip_reason, SkipReason.EMPTY_WINDOW)
        self.assertIsNone(report.outcome)

    def test_identifiers_override_config(self):
        workflow = self._workflow({"1.6.0": True})
        report = workflow.run("echo 1", "c", identifiers=["1.6.0"])
        self.assertEqual([r.identifier for r in report.per_version_results], ["1.6.0"])

    def test_linear_mode_from_config(self):
        self.config.assume_monotonic = False
        self.history.between.return_value = [f"r{i:02d}" for i in range(20, 0, -1)]
        outcomes = {"devel": False, "2.0.0": True}
        outcomes.update({f"r{i:02d}": i <= 5 for i in range(20, 0, -1)})
        workflow = self._workflow(outcomes)

        report = workflow.run("echo 1", "c")

        self.assertEqual(report.outcome.breaking_revision, "r06")
        self.assertEqual(report.commits_tested, 16)

    def test_progress_reported_to_ui(self):
        workflow = self._workflow({"devel": False, "2.0.0": True, "c3c3c3c": True})
        workflow.run("echo 1", "c")

        phases = [
            c.kwargs["phase"]
            for c in self.ui.update_progress.call_args_list
            if "phase" in c.kwargs
        ]
        self.assertEqual(phases, ["Version Matrix", "Commit Bisect"])
        last = self.ui.update_progress.call_args_list[-1].kwargs
        self.assertEqual(last["commits_tested"], 3)

    def test_infrastructure_fault_propagates(self):
        self.history.between.side_effect = RuntimeError("checkout broken")
        workflow = self._workflow({"devel": False, "2.0.0": True})
        with self.assertRaises(RuntimeError):
            workflow.run("echo 1", "c")


class BisectReportTest(unittest.TestCase):
    def test_rate(self):
        report = BisectReport(window_size=8, duration_seconds=4.0)
        self.assertEqual(report.commits_considered, 8)
        self.assertEqual(report.commits_per_second, 2.0)

    def test_rate_without_duration(self):
        self.assertEqual(BisectReport().commits_per_second, 0.0)


class BisectFunctionTest(unittest.TestCase):
    def test_bisect_uses_given_identifiers(self):
        config = BisectConfig(work_dir=Path("/tmp"))
        with patch("nimbisect.workflow.BisectWorkflow") as workflow_cls:
            bisect(["devel", "1.6.0"], "echo 1", "c", config=config)

        workflow_cls.assert_called_once_with(config)
        workflow_cls.return_value.run.assert_called_once_with(
            "echo 1", "c", identifiers=["devel", "1.6.0"]
        )


if __name__ == "__main__":
    unittest.main()
