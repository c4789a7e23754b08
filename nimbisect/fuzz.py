# Copyright (c) Meta Platforms, Inc. and affiliates.

"""
Fuzzing constants prelude.

Every probed snippet is prefixed with a `const` section exporting one edge-case
value per basic Nim type (`nimFuzzInt`, `nimFuzzString`, ...). Snippets may use
them to exercise boundaries without hardcoding values. The choice is seeded so
a run can be reproduced.
"""

import random
from typing import Optional, Sequence

FLOATS = (-0.0, 2.718281828459045, 3.141592653589793, 6.283185307179586, 2.225073858507201e-308)
INT64 = (
    -9223372036854775808, -2147483648, -32768, -128, 0, 127, 255, 32767,
    65535, 2147483647, 4294967295, 9223372036854775807,
)
INT32 = (-2147483648, -32768, -128, 0, 127, 255, 32767, 65535, 2147483647)
INT16 = (-32768, -128, 0, 127, 255, 32767)
INT8 = (-128, 0, 127)
UINT64 = (
    0, 127, 255, 32767, 65535, 2147483647, 4294967295,
    9223372036854775807, 18446744073709551614,
)
UINT32 = (0, 127, 255, 32767, 65535, 2147483647, 4294967295)
UINT16 = (0, 127, 255, 32767, 65535)
UINT8 = (0, 127, 255)
STRINGS = (
    "", " ", "\t", "1/0", "-0", "NaN", "''", "``", "-1E+02", "0..0", "0x0",
    "undefined", "null", "nil", "()", "{0}", "%*.*s", "%@", "%n",
    "CON", "PRN", "AUX", "NUL", "COM1", "LPT1", "%s%s%s%s%s", "$HOME",
    "٠١٢٣٤٥٦٧٨٩",
    "田中さんにあげて下さい",
    "﷽",
    "사회과학원 어학연구소",
    "The quic\b\b\b\b\b\bk brown fo\u0007\u0007\u0007x",
)


class FuzzPrelude:
    """
    Generates the `const` prelude prepended to snippets.

    Example:
        >>> prelude = FuzzPrelude(seed=42).render()
        >>> "nimFuzzInt*" in prelude
        True
    """

    def __init__(self, seed: Optional[int] = None) -> None:
        self.seed = seed
        self._rng = random.Random(seed)

    def _pick(self, values: Sequence):
        return self._rng.choice(values)

    def _float(self) -> str:
        return repr(self._pick(FLOATS))

    def _string(self) -> str:
        return f'"""{self._pick(STRINGS)}"""'

    def render(self) -> str:
        """Return the prelude source, one constant per line."""
        rows = [
            ("nimFuzzFloat", "float", self._float()),
            ("nimFuzzFloat64", "float64", self._float()),
            ("nimFuzzFloat32", "float32", self._float()),
            ("nimFuzzBool", "bool", str(self._pick((True, False))).lower()),
            ("nimFuzzInt", "int", self._pick(INT64)),
            ("nimFuzzInt64", "int64", self._pick(INT64)),
            ("nimFuzzInt32", "int32", self._pick(INT32)),
            ("nimFuzzInt16", "int16", self._pick(INT16)),
            ("nimFuzzInt8", "int8", self._pick(INT8)),
            ("nimFuzzUint", "uint", self._pick(UINT64)),
            ("nimFuzzUint64", "uint64", self._pick(UINT64)),
            ("nimFuzzUint32", "uint32", self._pick(UINT32)),
            ("nimFuzzUint16", "uint16", self._pick(UINT16)),
            ("nimFuzzUint8", "uint8", self._pick(UINT8)),
            ("nimFuzzByte", "byte", self._pick(UINT8)),
            ("nimFuzzPositive", "Positive", self._pick(UINT32) + 1),
            ("nimFuzzNatural", "Natural", self._pick(UINT32)),
            ("nimFuzzString", "string", self._string()),
            ("nimFuzzChar", "char", self._rng.randrange(256)),
        ]
        lines = ["const"]
        for name, type_name, value in rows:
            lines.append(f"  {name + '*':<18}= {type_name}({value})")
        return "\n".join(lines) + "\n"
