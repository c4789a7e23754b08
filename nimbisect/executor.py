# Copyright (c) Meta Platforms, Inc. and affiliates.

"""
Subprocess runner for choosenim, nim, git and valgrind.

A bisect run shells out hundreds of times and must survive every one of those
calls: a toolchain that hangs, a compiler binary that vanished between two
`choosenim update`s, or a snippet that prints invalid UTF-8 all come back as a
failed CommandResult instead of an exception. Compiler diagnostics and the
program's own output are usually wanted in the order they were printed, so
`combine_output=True` routes stderr into stdout. Every call is appended to the
command log.
"""

import os
import subprocess
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from nimbisect.logger import BisectLogger


def format_duration(seconds: float) -> str:
    """Format duration in human-readable format."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        return f"{minutes}m {seconds % 60:.1f}s"
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    return f"{hours}h {minutes}m {seconds % 60:.1f}s"


@dataclass
class CommandResult:
    """
    Outcome of one external command.

    Attributes:
        command: The command line, joined into one string.
        exit_code: Process exit status; -1 when it never finished (timeout)
            or never started (missing executable, bad cwd).
        stdout: Standard output, or the interleaved output when run with
            `combine_output=True`.
        stderr: Standard error; empty for combined runs unless the executor
            itself reports a problem there.
        duration_seconds: Wall time of the call.
    """

    command: str
    exit_code: int
    stdout: str
    stderr: str
    duration_seconds: float

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """stdout followed by stderr."""
        return self.stdout + self.stderr

    @property
    def duration_formatted(self) -> str:
        return format_duration(self.duration_seconds)


def _decode(data: Union[bytes, str, None]) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


class ShellExecutor:
    """
    Runs external tools on behalf of the switcher, probe and history.

    Example:
        >>> executor = ShellExecutor(BisectLogger("./bisect_logs"))
        >>> executor.run_command(["nim", "--version"]).stdout.splitlines()[0]
        'Nim Compiler Version 2.0.0 [Linux: amd64]'
        >>> result = executor.run_command(
        ...     "nim c --run temp.nim", cwd="/tmp/work", shell=True,
        ...     timeout=300, combine_output=True,
        ... )
    """

    def __init__(self, logger: BisectLogger) -> None:
        self.logger = logger

    def run_command(
        self,
        cmd: Union[str, List[str]],
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        shell: bool = False,
        combine_output: bool = False,
    ) -> CommandResult:
        """
        Run a command to completion.

        Args:
            cmd: Argument list, or a command line when `shell` is True.
            cwd: Working directory.
            env: Variables added on top of the current environment.
            timeout: Hard limit in seconds; the process is killed after it.
            shell: Run `cmd` through the shell (needed for `&& valgrind`).
            combine_output: Interleave stderr into stdout.

        Returns:
            CommandResult. Never raises for timeouts or missing executables.
        """
        full_env = os.environ.copy()
        if env:
            full_env.update(env)

        cmd_str = cmd if isinstance(cmd, str) else " ".join(cmd)
        self.logger.debug(f"Executing: {cmd_str}")
        if cwd:
            self.logger.debug(f"  cwd: {cwd}")

        start_time = time.time()
        try:
            completed = subprocess.run(
                cmd,
                cwd=cwd,
                env=full_env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if combine_output else subprocess.PIPE,
                text=True,
                errors="replace",
                timeout=timeout,
                shell=shell,
            )
            result = CommandResult(
                command=cmd_str,
                exit_code=completed.returncode,
                stdout=completed.stdout,
                stderr=_decode(completed.stderr),
                duration_seconds=time.time() - start_time,
            )
        except subprocess.TimeoutExpired as e:
            result = CommandResult(
                command=cmd_str,
                exit_code=-1,
                stdout=_decode(e.stdout),
                stderr=f"Command timed out after {timeout}s",
                duration_seconds=time.time() - start_time,
            )
        except OSError as e:
            # Missing executable or unreadable cwd
            result = CommandResult(
                command=cmd_str,
                exit_code=-1,
                stdout="",
                stderr=f"OSError: {e}",
                duration_seconds=time.time() - start_time,
            )

        self.logger.log_command_output(cmd_str, result.output, result.exit_code)
        self.logger.debug(
            f"Command completed in {result.duration_formatted} "
            f"(exit code: {result.exit_code})"
        )
        return result
