# Copyright (c) Meta Platforms, Inc. and affiliates.

"""Tests for ToolchainSwitcher (CPU-only, no toolchain required)."""

import unittest
from unittest.mock import MagicMock

from nimbisect.switcher import ToolchainSwitcher, revision_identifier
from tests.fakes import command_result


class ToolchainSwitcherTest(unittest.TestCase):
    """Tests for choosenim-based toolchain selection."""

    def setUp(self):
        self.executor = MagicMock()
        self.switcher = ToolchainSwitcher(
            self.executor, MagicMock(), timeout=600, source_date_epoch=1700000000
        )

    def test_select_success(self):
        self.executor.run_command.return_value = command_result(stdout="Switched to Nim 2.0.0\n")

        outcome = self.switcher.select("2.0.0")

        self.assertTrue(outcome.available)
        self.assertEqual(outcome.attempts, 1)
        self.assertEqual(outcome.context.identifier, "2.0.0")
        self.assertEqual(outcome.context.output, "Switched to Nim 2.0.0")
        self.assertEqual(self.switcher.active, outcome.context)

    def test_select_command_line(self):
        self.executor.run_command.return_value = command_result()

        self.switcher.select("devel")

        args, kwargs = self.executor.run_command.call_args
        self.assertEqual(
            args[0],
            ["choosenim", "--noColor", "--skipClean", "--yes", "update", "devel"],
        )
        self.assertEqual(kwargs["env"]["CHOOSENIM_NO_ANALYTICS"], "1")
        self.assertEqual(kwargs["env"]["SOURCE_DATE_EPOCH"], "1700000000")
        self.assertEqual(kwargs["timeout"], 600)

    def test_exactly_three_attempts(self):
        self.executor.run_command.return_value = command_result(
            exit_code=1, stderr="Error: build failed"
        )

        outcome = self.switcher.select("1.0.0")

        self.assertFalse(outcome.available)
        self.assertIsNone(outcome.context)
        self.assertEqual(outcome.attempts, 3)
        self.assertEqual(outcome.error, "Error: build failed")
        self.assertEqual(self.executor.run_command.call_count, 3)

    def test_retry_then_success(self):
        self.executor.run_command.side_effect = [
            command_result(exit_code=1),
            command_result(exit_code=0),
        ]

        outcome = self.switcher.select("stable")

        self.assertTrue(outcome.available)
        self.assertEqual(outcome.attempts, 2)
        self.assertEqual(self.executor.run_command.call_count, 2)

    def test_custom_attempts(self):
        switcher = ToolchainSwitcher(self.executor, MagicMock(), max_attempts=1)
        self.executor.run_command.return_value = command_result(exit_code=1)

        self.assertFalse(switcher.select("devel").available)
        self.assertEqual(self.executor.run_command.call_count, 1)

    def test_failed_select_clears_active(self):
        self.executor.run_command.return_value = command_result()
        self.switcher.select("2.0.0")
        self.assertIsNotNone(self.switcher.active)

        self.executor.run_command.return_value = command_result(exit_code=1)
        self.switcher.select("1.6.0")

        self.assertIsNone(self.switcher.active)

    def test_no_source_date_epoch(self):
        switcher = ToolchainSwitcher(self.executor, MagicMock())
        self.executor.run_command.return_value = command_result()

        switcher.select("devel")

        env = self.executor.run_command.call_args.kwargs["env"]
        self.assertNotIn("SOURCE_DATE_EPOCH", env)

    def test_select_revision(self):
        self.executor.run_command.return_value = command_result()

        outcome = self.switcher.select_revision("a488067")

        self.assertEqual(outcome.identifier, "#a488067")
        self.assertEqual(self.executor.run_command.call_args.args[0][-1], "#a488067")

    def test_revision_identifier(self):
        self.assertEqual(revision_identifier("abc1234"), "#abc1234")
        self.assertEqual(revision_identifier("#abc1234"), "#abc1234")


if __name__ == "__main__":
    unittest.main()
