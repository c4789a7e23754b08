# Copyright (c) Meta Platforms, Inc. and affiliates.

"""Tests for the fuzzing constants prelude."""

import unittest

from nimbisect.fuzz import FuzzPrelude

NAMES = (
    "nimFuzzFloat", "nimFuzzFloat64", "nimFuzzFloat32", "nimFuzzBool",
    "nimFuzzInt", "nimFuzzInt64", "nimFuzzInt32", "nimFuzzInt16", "nimFuzzInt8",
    "nimFuzzUint", "nimFuzzUint64", "nimFuzzUint32", "nimFuzzUint16",
    "nimFuzzUint8", "nimFuzzByte", "nimFuzzPositive", "nimFuzzNatural",
    "nimFuzzString", "nimFuzzChar",
)


class FuzzPreludeTest(unittest.TestCase):
    def test_exports_every_constant(self):
        lines = FuzzPrelude(seed=1).render().splitlines()

        self.assertEqual(lines[0], "const")
        self.assertEqual(len(lines), len(NAMES) + 1)
        for name, line in zip(NAMES, lines[1:]):
            self.assertTrue(line.startswith(f"  {name}*"), line)
            self.assertIn("= ", line)

    def test_seed_is_reproducible(self):
        self.assertEqual(FuzzPrelude(seed=7).render(), FuzzPrelude(seed=7).render())

    def test_ends_with_newline(self):
        self.assertTrue(FuzzPrelude(seed=3).render().endswith("\n"))

    def test_positive_is_positive(self):
        for seed in range(50):
            line = next(
                l for l in FuzzPrelude(seed=seed).render().splitlines()
                if "nimFuzzPositive" in l
            )
            value = int(line.split("Positive(")[1].rstrip(")"))
            self.assertGreater(value, 0)

    def test_char_in_range(self):
        for seed in range(50):
            line = next(
                l for l in FuzzPrelude(seed=seed).render().splitlines()
                if "nimFuzzChar" in l
            )
            value = int(line.split("char(")[1].rstrip(")"))
            self.assertTrue(0 <= value <= 255)


if __name__ == "__main__":
    unittest.main()
