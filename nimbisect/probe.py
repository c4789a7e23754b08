# Copyright (c) Meta Platforms, Inc. and affiliates.

"""
Probe: one compile-and-run of the test snippet under the active toolchain.

A compile error and a runtime error are both plain failures; the bisect does
not distinguish between them. Build artifacts are left in the work directory
for reporting (binary size, generated C/C++/JS), and `ast_gen` dumps the
snippet's AST with the same toolchain.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from nimbisect.command import (
    build_ast_command,
    build_probe_command,
    render_ast_dumper,
)
from nimbisect.executor import ShellExecutor
from nimbisect.fuzz import FuzzPrelude
from nimbisect.logger import BisectLogger
from nimbisect.switcher import ToolchainContext

_VALGRIND_PREFIX = re.compile(r"^==\d+== ", re.MULTILINE)
_C_COMMENT = re.compile(r"/\*[\s\S]*?\*/")


@dataclass(frozen=True)
class ProbeResult:
    """
    Outcome of a single probe.

    Attributes:
        success: True if compile and run both exited with status 0.
        output: Combined compiler and program output.
        duration_ms: Wall time of the compile+run in milliseconds.
        artifact_size_bytes: Size of the produced binary, 0 if none.
        identifier: Toolchain the probe ran under, if known.
    """

    success: bool
    output: str
    duration_ms: int
    artifact_size_bytes: int
    identifier: Optional[str] = None


class Probe:
    """
    Compiles and runs a snippet with whatever toolchain is active.

    Results are never memoized: probing the same toolchain twice runs the
    compiler twice.

    Example:
        >>> probe = Probe(Path("/tmp/work"), executor, logger)
        >>> result = probe.run('echo "hello"', "c -d:release")
        >>> result.success
        True
    """

    def __init__(
        self,
        work_dir: Path,
        executor: ShellExecutor,
        logger: BisectLogger,
        prelude: Optional[FuzzPrelude] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Initialize the probe.

        Args:
            work_dir: Directory for the snippet, nimcache and binary.
            executor: ShellExecutor used to run the compiler.
            logger: BisectLogger instance for logging.
            prelude: Fuzzing prelude prepended to the snippet, if any.
            timeout: Hard timeout in seconds for one compile+run.
        """
        self.work_dir = Path(work_dir)
        self.executor = executor
        self.logger = logger
        self.prelude = prelude
        self.timeout = timeout
        self._prelude_source = prelude.render() if prelude else ""
        self._last_target: Optional[str] = None

    def run(
        self,
        snippet: str,
        cmd: str,
        context: Optional[ToolchainContext] = None,
    ) -> ProbeResult:
        """
        Compile and run `snippet` with the user command `cmd`.

        Args:
            snippet: Nim source of the test program.
            cmd: User command, e.g. "c --mm:orc".
            context: Toolchain the caller activated for this probe.

        Returns:
            ProbeResult.

        Raises:
            CommandBuildError: If `cmd` is not a valid probe command.
        """
        probe_cmd = build_probe_command(cmd, self.work_dir)
        self.work_dir.mkdir(parents=True, exist_ok=True)
        probe_cmd.source_file.write_text(self._prelude_source + snippet)
        # Artifacts of the previous toolchain must not be measured or reported.
        for stale in (probe_cmd.output_file, *self._generated_sources()):
            stale.unlink(missing_ok=True)
        self._last_target = probe_cmd.target

        identifier = context.identifier if context else None
        self.logger.info(f"Probing {identifier or 'active toolchain'}")
        self.logger.debug(f"COMMAND: {probe_cmd.shell_command}")

        result = self.executor.run_command(
            probe_cmd.shell_command,
            cwd=str(self.work_dir),
            env=probe_cmd.env,
            timeout=self.timeout,
            shell=True,
            combine_output=True,
        )

        output = _VALGRIND_PREFIX.sub("", result.output).strip()
        self.logger.info(
            f"  {'Passed' if result.success else 'Failed'} "
            f"in {result.duration_formatted}"
        )
        return ProbeResult(
            success=result.success,
            output=output,
            duration_ms=int(result.duration_seconds * 1000),
            artifact_size_bytes=self.artifact_size(),
            identifier=identifier,
        )

    def artifact_size(self) -> int:
        """Size in bytes of the last produced binary, 0 if none exists."""
        output_file = self.work_dir / "temp"
        if output_file.exists():
            return output_file.stat().st_size
        return 0

    def _generated_sources(self):
        return [self.work_dir / "@mtemp.nim.c", self.work_dir / "@mtemp.nim.cpp"]

    def intermediate_representation(self) -> str:
        """
        Generated code of the last probe with blank lines and comments removed.

        Looks for the C output first, then C++, then the JS output file.
        """
        candidates = self._generated_sources()
        if self._last_target == "js":
            candidates.append(self.work_dir / "temp")

        for path in candidates:
            if path.exists():
                text = path.read_text(errors="replace")
                lines = [line for line in text.splitlines() if line.strip()]
                return _C_COMMENT.sub("", "\n".join(lines)).strip()
        return ""

    def ast_gen(self, snippet: str) -> str:
        """
        Dump the AST construction code of `snippet` with the active toolchain.

        The snippet is wrapped in `dumpAstGen:` and type-checked with
        `nim check`; the fuzzing prelude is not included.

        Returns:
            The dump, or "" if `nim check` failed.
        """
        self.work_dir.mkdir(parents=True, exist_ok=True)
        dumper = self.work_dir / "dumper.nim"
        dumper.write_text(render_ast_dumper(snippet))

        result = self.executor.run_command(
            build_ast_command(dumper),
            cwd=str(self.work_dir),
            timeout=self.timeout,
        )
        if not result.success:
            self.logger.warning(f"AST dump failed: {result.stderr.strip()}")
            return ""
        return result.stdout.strip()
