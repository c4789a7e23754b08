# Copyright (c) Meta Platforms, Inc. and affiliates.

"""
Compile command builder.

Turns a user command such as `c --mm:orc -d:useMalloc` into the full shell
command a probe runs: target specific defines, ARC/ORC debugging switches,
fixed output/nimcache locations and, for ARC/ORC + malloc builds, a valgrind
leak check of the produced binary.
"""

import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

BANNED_SEPARATORS = (";", "&&", "||")
TARGETS = ("c", "cpp", "js")

JS_FLAGS = "-d:nodejs -d:nimExperimentalAsyncjsThen -d:nimExperimentalJsfetch"
ARC_FLAGS = "-d:nimArcDebug -d:nimArcIds"
VALGRIND_FLAGS = (
    "-d:nimAllocPagesViaMalloc -d:useSysAssert -d:useGcAssert "
    "-d:nimLeakDetector --debugger:native --debuginfo:on"
)
COMMON_FLAGS = (
    "-d:nimDebugDlOpen -d:ssl -d:nimDisableCertificateValidation "
    "--forceBuild:on --colors:off --verbosity:0 --hints:off --warnings:off "
    "--styleCheck:off --lineTrace:off"
)

VALGRIND_OPTS = (
    "--tool=memcheck --leak-check=full --show-leak-kinds=all "
    "--undef-value-errors=yes --track-origins=yes --show-error-list=yes "
    "--keep-debuginfo=yes --show-emwarns=yes --demangle=yes --smc-check=none "
    "--num-callers=9 --max-threads=9"
)

AST_CHECK_FLAGS = (
    "--verbosity:0",
    "--hints:off",
    "--warnings:off",
    "--colors:off",
    "--lineTrace:off",
    "--forceBuild:on",
    "--import:std/macros",
)


class CommandBuildError(ValueError):
    """Raised when a user command cannot be turned into a probe command."""

    pass


def has_arc(cmd: str) -> bool:
    s = cmd.strip().lower()
    return any(
        flag in s
        for flag in (
            "--gc:arc",
            "--gc:orc",
            "--gc:atomicarc",
            "--mm:arc",
            "--mm:orc",
            "--mm:atomicarc",
        )
    )


def has_malloc(cmd: str) -> bool:
    s = cmd.strip().lower()
    return "-d:usemalloc" in s or "--define:usemalloc" in s


@dataclass(frozen=True)
class ProbeCommand:
    """
    A fully expanded probe command.

    Attributes:
        shell_command: Command line passed to the shell.
        source_file: Where the snippet has to be written.
        output_file: Binary (or .js file) produced by the compiler.
        target: Backend, one of "c", "cpp", "js".
        valgrind: Whether the binary runs under valgrind.
    """

    shell_command: str
    source_file: Path
    output_file: Path
    target: str
    valgrind: bool

    @property
    def env(self) -> Dict[str, str]:
        """Environment overrides for running the command."""
        return {"VALGRIND_OPTS": VALGRIND_OPTS} if self.valgrind else {}


def build_probe_command(user_cmd: str, work_dir: Path) -> ProbeCommand:
    """
    Expand a user command into the command a probe runs.

    Args:
        user_cmd: `c|cpp|js` followed by extra compiler switches, optionally
            prefixed with `nim`.
        work_dir: Directory holding the snippet, nimcache and output.

    Returns:
        ProbeCommand.

    Raises:
        CommandBuildError: If the command chains shell commands or does not
            name a supported target.
    """
    cmd = user_cmd.strip().split("\n")[0].strip()
    if any(sep in cmd for sep in BANNED_SEPARATORS):
        raise CommandBuildError(
            f"Command must not contain any of {', '.join(BANNED_SEPARATORS)}"
        )

    tokens: List[str] = cmd.split()
    if tokens and tokens[0].lstrip("!") == "nim":
        tokens = tokens[1:]
    if not tokens or tokens[0] not in TARGETS:
        raise CommandBuildError(
            f"Command must start with one of: {', '.join(TARGETS)}"
        )
    target = tokens[0]
    cmd = " ".join(tokens)

    work_dir = Path(work_dir)
    source_file = work_dir / "temp.nim"
    output_file = work_dir / "temp"

    parts = ["nim", cmd]
    if target == "js":
        parts.append(JS_FLAGS)
    use_arc = has_arc(cmd)
    use_valgrind = use_arc and has_malloc(cmd)
    if use_arc:
        parts.append(ARC_FLAGS)
    if use_valgrind:
        parts.append(VALGRIND_FLAGS)
    else:
        parts.append("--run")
    parts.append(COMMON_FLAGS)
    parts.append(f"--nimcache:{shlex.quote(str(work_dir))}")
    parts.append(f"--out:{shlex.quote(str(output_file))}")
    parts.append(shlex.quote(str(source_file)))

    shell_command = " ".join(parts)
    if use_valgrind:
        shell_command += f" && valgrind {shlex.quote(str(output_file))}"

    return ProbeCommand(
        shell_command=shell_command,
        source_file=source_file,
        output_file=output_file,
        target=target,
        valgrind=use_valgrind,
    )


def build_ast_command(dumper_file: Path) -> List[str]:
    """Argument list that type-checks `dumper_file` with std/macros imported."""
    return ["nim", "check", *AST_CHECK_FLAGS, str(dumper_file)]


def render_ast_dumper(snippet: str) -> str:
    """Wrap `snippet` in a `dumpAstGen:` block, indenting every line by two spaces."""
    body = "\n".join("  " + line for line in snippet.split("\n"))
    return f"dumpAstGen:\n{body}"
