# Copyright (c) Meta Platforms, Inc. and affiliates.

"""Tests for the Rich TUI and final summary."""

import io
import unittest
from unittest.mock import patch

from rich.console import Console

from nimbisect.history import RevisionMetadata
from nimbisect.matrix import VersionResult, VersionStatus
from nimbisect.probe import ProbeResult
from nimbisect.search import Found, NotFound
from nimbisect.ui import (
    BisectUI,
    commit_url,
    format_elapsed,
    format_size,
    print_environment_status,
    print_final_summary,
)
from nimbisect.workflow import BisectReport, SkipReason


def _console():
    return Console(file=io.StringIO(), width=200, color_system=None)


def _report(outcome=None, skip_reason=None):
    return BisectReport(
        per_version_results=[
            VersionResult(
                identifier="devel",
                status=VersionStatus.FAILED,
                probe=ProbeResult(False, "Error: unhandled exception", 1500, 0),
            ),
            VersionResult(
                identifier="2.0.0",
                status=VersionStatus.PASSED,
                probe=ProbeResult(True, "ok", 900, 1536),
            ),
            VersionResult(identifier="0.20.2", status=VersionStatus.UNAVAILABLE),
        ],
        outcome=outcome,
        skip_reason=skip_reason,
        works="2.0.0",
        fails="devel",
        window_size=12,
        commits_tested=4,
        duration_seconds=30.0,
    )


class FormattingTest(unittest.TestCase):
    def test_format_size(self):
        self.assertEqual(format_size(0), "0 bytes (0 bytes)")
        self.assertEqual(format_size(1), "1 byte (1 bytes)")
        self.assertEqual(format_size(512), "512 bytes (512 bytes)")
        self.assertEqual(format_size(1536), "1.50 Kb (1,536 bytes)")
        self.assertEqual(format_size(3 * 1048576), "3.00 Mb (3,145,728 bytes)")
        self.assertEqual(format_size(1073741824), "1.00 Gb (1,073,741,824 bytes)")

    def test_format_elapsed(self):
        self.assertEqual(format_elapsed(42), "42s")
        self.assertEqual(format_elapsed(125), "2m 5s")
        self.assertEqual(format_elapsed(7260), "2h 1m")

    def test_commit_url(self):
        self.assertEqual(
            commit_url("#a488067"), "https://github.com/nim-lang/Nim/commit/a488067"
        )


class BisectUITest(unittest.TestCase):
    def test_disabled_prints_lines(self):
        ui = BisectUI(enabled=False)
        self.assertFalse(ui.is_tui_enabled)
        self.assertIn("--no-tui", ui.get_tui_status_message())

        with patch("sys.stdout", new_callable=io.StringIO) as stdout:
            with ui:
                ui.create_output_callback()("Probing devel\n")

        self.assertEqual(stdout.getvalue(), "Probing devel\n")
        self.assertEqual(ui.output_lines, ["Probing devel"])

    def test_not_a_tty(self):
        with patch("sys.stdout", new_callable=io.StringIO):
            ui = BisectUI(enabled=True)
        self.assertFalse(ui.is_tui_enabled)
        self.assertIn("TTY", ui.disabled_reason)

    def test_update_progress_ignores_unknown_keys(self):
        ui = BisectUI(enabled=False)
        ui.update_progress(phase="Commit Bisect", commits_tested=7, bogus=1)
        self.assertEqual(ui.progress.phase, "Commit Bisect")
        self.assertEqual(ui.progress.commits_tested, 7)
        self.assertFalse(hasattr(ui.progress, "bogus"))

    def test_output_is_bounded(self):
        ui = BisectUI(enabled=False)
        with patch("sys.stdout", new_callable=io.StringIO):
            for i in range(150):
                ui.append_output(f"line {i}")
        self.assertEqual(len(ui.output_lines), ui.max_output_lines)
        self.assertEqual(ui.output_lines[-1], "line 149")


class FinalSummaryTest(unittest.TestCase):
    def _render(self, **kwargs):
        console = _console()
        print_final_summary(console=console, **kwargs)
        return console.file.getvalue()

    def test_found(self):
        meta = RevisionMetadata(
            revision="b2b2b2b",
            author="araq",
            message="refactoring",
            timestamp="2023-08-01 10:00:00 +0200",
            changed_files=("compiler/semexprs.nim",),
        )
        outcome = Found("b2b2b2b", meta, ("c3c3c3c", "b2b2b2b", "a1a1a1a"))

        text = self._render(report=_report(outcome), log_dir="./bisect_logs")

        self.assertIn("Bisect Result", text)
        self.assertIn("Breaking commit: b2b2b2b", text)
        self.assertIn("araq introduced a bug at 2023-08-01 10:00:00 +0200", text)
        self.assertIn("compiler/semexprs.nim", text)
        self.assertIn("https://github.com/nim-lang/Nim/commit/a1a1a1a", text)
        self.assertIn("off-by-one", text)
        self.assertIn("2.0.0", text)
        self.assertIn("(works)", text)
        self.assertIn("(fails)", text)
        self.assertIn("UNAVAILABLE", text)
        self.assertIn("1.50 Kb", text)
        self.assertIn("Error: unhandled exception", text)
        self.assertIn("Commits considered: 15", text)

    def test_failing_version_shows_generated_code(self):
        report = _report(skip_reason=SkipReason.EMPTY_WINDOW)
        failed = report.per_version_results[0]
        failed.probe = ProbeResult(False, "SIGSEGV: Illegal storage access.", 1500, 2048)
        failed.intermediate_representation = "\n".join(
            f"N_LIB_PRIVATE void f{i}(void) {{}}" for i in range(40)
        )
        failed.ast = "nnkStmtList.newTree(\n  nnkDiscardStmt.newTree(newEmptyNode())\n)"

        text = self._render(report=report)

        self.assertIn("devel IR (binary size 2.00 Kb (2,048 bytes)):", text)
        self.assertIn("void f29(void)", text)
        self.assertNotIn("void f30(void)", text)
        self.assertIn("... (10 more lines)", text)
        self.assertIn("devel AST:", text)
        self.assertIn("nnkDiscardStmt.newTree(newEmptyNode())", text)
        self.assertNotIn("2.0.0 IR", text)

    def test_failing_version_without_generated_code(self):
        text = self._render(report=_report(skip_reason=SkipReason.EMPTY_WINDOW))
        self.assertIn("devel output:", text)
        self.assertNotIn("IR (binary size", text)
        self.assertNotIn("AST:", text)

    def test_found_without_metadata(self):
        outcome = Found("b2b2b2b", None, ("c3c3c3c", "b2b2b2b"))

        text = self._render(report=_report(outcome))

        self.assertIn("Breaking commit: b2b2b2b", text)
        self.assertIn("Commit metadata unavailable", text)
        self.assertIn("https://github.com/nim-lang/Nim/commit/c3c3c3c", text)

    def test_not_found(self):
        text = self._render(report=_report(NotFound(("c3c3c3c", "b2b2b2b"))))
        self.assertIn("can not be found", text)
        self.assertIn("c3c3c3c", text)
        self.assertNotIn("off-by-one", text)

    def test_skipped(self):
        text = self._render(report=_report(skip_reason=SkipReason.EMPTY_WINDOW))
        self.assertIn("Commit bisect skipped: empty-window", text)

    def test_error(self):
        text = self._render(
            error_msg="Failed to clone Nim repo",
            command_log="logs/x_bisect_commands.log",
            log_file="logs/x_bisect.log",
        )
        self.assertIn("Bisect Failed", text)
        self.assertIn("Failed to clone Nim repo", text)
        self.assertIn("logs/x_bisect_commands.log", text)


class EnvironmentStatusTest(unittest.TestCase):
    def test_table(self):
        console = _console()
        print_environment_status({"Git": "2.42.0", "NodeJS": None}, console=console)
        text = console.file.getvalue()
        self.assertIn("2.42.0", text)
        self.assertIn("not found", text)


if __name__ == "__main__":
    unittest.main()
