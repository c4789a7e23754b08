# Copyright (c) Meta Platforms, Inc. and affiliates.

"""
Rich TUI interface for bisect runs.

This module provides a split-screen terminal UI for displaying bisect progress
and real-time log output, and the final summary panel. The live display is
only used on a TTY; otherwise lines are printed as they come.
"""

import sys
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from rich.console import Console, Group
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from nimbisect.config import NIM_COMMIT_URL

if TYPE_CHECKING:
    from nimbisect.workflow import BisectReport


def format_elapsed(seconds: float) -> str:
    """Format elapsed time as human-readable string."""
    if seconds < 60:
        return f"{seconds:.0f}s"
    elif seconds < 3600:
        mins = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{mins}m {secs}s"
    else:
        hours = int(seconds // 3600)
        mins = int((seconds % 3600) // 60)
        return f"{hours}h {mins}m"


def format_size(size: int) -> str:
    """Format a byte count, e.g. "1.50 Kb (1,536 bytes)"."""
    exact = f" ({size:,} bytes)"
    if size >= 1073741824:
        human = f"{size / 1073741824:.2f} Gb"
    elif size >= 1048576:
        human = f"{size / 1048576:.2f} Mb"
    elif size >= 1024:
        human = f"{size / 1024:.2f} Kb"
    elif size > 1:
        human = f"{size} bytes"
    elif size == 1:
        human = "1 byte"
    else:
        human = "0 bytes"
    return human + exact


def commit_url(revision: str) -> str:
    return NIM_COMMIT_URL + revision.lstrip("#")


class _LiveContent:
    """
    Wrapper that regenerates the layout on each render.

    Rich calls __rich__ on every Live refresh, which keeps the elapsed time
    ticking without explicit updates.
    """

    def __init__(self, ui: "BisectUI") -> None:
        self._ui = ui

    def __rich__(self) -> Layout:
        if self._ui.start_time:
            self._ui.progress.elapsed_seconds = time.time() - self._ui.start_time
        self._ui._update_layout()
        return self._ui._layout


@dataclass
class BisectProgress:
    """
    Bisect progress state for UI display.

    Attributes:
        phase: Current phase name (e.g., "Version Matrix").
        phase_number: Current phase number.
        total_phases: Total number of phases.
        current_commit: Identifier or commit currently being probed.
        commits_tested: Number of probes so far.
        elapsed_seconds: Time elapsed since start.
        status_message: Result of the last probe.
        log_dir: Directory containing log files.
        log_file: Main log file name.
        command_log: Command log file name.
    """

    phase: str = "Initializing"
    phase_number: int = 1
    total_phases: int = 2
    current_commit: Optional[str] = None
    commits_tested: int = 0
    elapsed_seconds: float = 0.0
    status_message: Optional[str] = None
    log_dir: Optional[str] = None
    log_file: Optional[str] = None
    command_log: Optional[str] = None


class BisectUI:
    """
    Rich-based TUI for bisect runs.

    Provides a split-screen interface with:
    - Top panel: Progress information (phase, commit, probes, elapsed time)
    - Bottom panel: Scrolling log output

    Falls back to printing plain lines when not running on a TTY or when
    explicitly disabled via enabled=False.

    Example:
        >>> ui = BisectUI()
        >>> with ui:
        ...     ui.update_progress(phase="Version Matrix", phase_number=1)
        ...     ui.append_output("Probing devel...")
    """

    def __init__(self, enabled: bool = True) -> None:
        """
        Initialize the TUI.

        Args:
            enabled: Whether to enable the live display.
        """
        self._disabled_reason: Optional[str] = None

        if not enabled:
            self._rich_enabled = False
            self._disabled_reason = "disabled by --no-tui flag"
        elif not sys.stdout.isatty() or not sys.stderr.isatty():
            self._rich_enabled = False
            self._disabled_reason = "not running in a TTY (e.g., piped output or CI)"
        else:
            self._rich_enabled = True

        self.progress = BisectProgress()
        self.output_lines: List[str] = []
        self.max_output_lines = 100
        self.start_time: Optional[float] = None

        self._console = Console()
        self._layout = self._create_layout() if self._rich_enabled else None
        self._live: Optional[Live] = None

    @property
    def is_tui_enabled(self) -> bool:
        """Check if the live TUI is enabled."""
        return self._rich_enabled

    @property
    def disabled_reason(self) -> Optional[str]:
        """Get the reason TUI was disabled, or None if enabled."""
        return self._disabled_reason

    def get_tui_status_message(self) -> str:
        """Get a human-readable message about TUI status."""
        if self._rich_enabled:
            return "Rich TUI enabled"
        return f"Rich TUI disabled: {self._disabled_reason}"

    def _create_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="progress", size=6),
            Layout(name="output"),
        )
        return layout

    def _render_progress_panel(self) -> Panel:
        p = self.progress
        if self.start_time:
            p.elapsed_seconds = time.time() - self.start_time

        text = Text()
        text.append("Phase: ", style="bold")
        text.append(f"{p.phase} ", style="green bold")
        text.append(f"({p.phase_number}/{p.total_phases})  ", style="green")

        text.append("Testing: ", style="bold")
        if p.current_commit:
            text.append(f"{p.current_commit[:12]}  ", style="cyan")
        else:
            text.append("N/A  ", style="dim")

        text.append("Probes: ", style="bold")
        text.append(f"{p.commits_tested}  ", style="yellow")

        text.append("Elapsed: ", style="bold")
        text.append(f"{format_elapsed(p.elapsed_seconds)}\n", style="magenta")

        if p.log_dir:
            text.append("Logs: ", style="bold")
            text.append(f"{p.log_dir}\n", style="dim")
            log_files = [name for name in (p.log_file, p.command_log) if name]
            if log_files:
                text.append("  └─ ", style="dim")
                text.append(", ".join(log_files) + "\n", style="bright_black")

        if p.status_message:
            text.append(p.status_message, style="bright_black italic")

        return Panel(
            text,
            title="[bold bright_green]Bisect Progress[/bold bright_green]",
            border_style="green",
        )

    def _render_output_panel(self) -> Panel:
        text = Text()
        for line in self.output_lines[-50:]:
            if len(line) > 200:
                line = line[:197] + "..."
            text.append(line + "\n")

        return Panel(
            text,
            title="[bold bright_cyan]Output[/bold bright_cyan]",
            border_style="blue",
        )

    def _update_layout(self) -> None:
        if not self._rich_enabled or not self._layout:
            return
        self._layout["progress"].update(self._render_progress_panel())
        self._layout["output"].update(self._render_output_panel())

    def start(self) -> None:
        """Start the live display."""
        self.start_time = time.time()
        if not self._rich_enabled:
            return

        self._update_layout()
        self._live = Live(
            _LiveContent(self),
            console=self._console,
            refresh_per_second=2,
            screen=True,
        )
        self._live.start()

    def stop(self) -> None:
        """Stop the live display."""
        if self._live:
            self._live.stop()
            self._live = None

    def update_progress(self, **kwargs) -> None:
        """
        Update progress information.

        Args:
            **kwargs: Fields to update on BisectProgress; unknown keys are ignored.
        """
        if self.start_time and "elapsed_seconds" not in kwargs:
            kwargs["elapsed_seconds"] = time.time() - self.start_time

        for key, value in kwargs.items():
            if hasattr(self.progress, key):
                setattr(self.progress, key, value)

        if self._rich_enabled and self._live:
            self._update_layout()

    def append_output(self, line: str) -> None:
        """
        Append a line to the output panel.

        Args:
            line: Output line to append.
        """
        line = line.rstrip("\n")
        self.output_lines.append(line)
        if len(self.output_lines) > self.max_output_lines:
            self.output_lines = self.output_lines[-self.max_output_lines :]

        if not self._rich_enabled:
            print(line)
        elif self._live:
            self._update_layout()

    def create_output_callback(self) -> Callable[[str], None]:
        """Create a callback that appends lines to the output panel."""

        def callback(line: str) -> None:
            self.append_output(line)

        return callback

    def __enter__(self) -> "BisectUI":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.stop()
        return False


_STATUS_STYLES = {
    "passed": ("OK", "green"),
    "failed": ("FAIL", "red"),
    "unavailable": ("UNAVAILABLE", "yellow"),
}


def _tail(output: str, lines: int = 15) -> str:
    return "\n".join(output.splitlines()[-lines:])


def _head(source: str, lines: int = 30) -> str:
    kept = source.splitlines()
    if len(kept) <= lines:
        return "\n".join(kept)
    return "\n".join(kept[:lines] + [f"... ({len(kept) - lines} more lines)"])


def _failure_details(entry) -> List[Text]:
    parts = [
        Text(f"\n{entry.identifier} output:", style="bold red"),
        Text(_tail(entry.probe.output)),
    ]
    if entry.intermediate_representation:
        size = format_size(entry.probe.artifact_size_bytes)
        parts.append(Text(f"\n{entry.identifier} IR (binary size {size}):", style="bold"))
        parts.append(Text(_head(entry.intermediate_representation), style="dim"))
    if entry.ast:
        parts.append(Text(f"\n{entry.identifier} AST:", style="bold"))
        parts.append(Text(_head(entry.ast), style="dim"))
    return parts


def _versions_table(report: "BisectReport") -> Table:
    table = Table(title="Version Matrix", expand=False)
    table.add_column("Version", style="bold")
    table.add_column("Result")
    table.add_column("Duration", justify="right")
    table.add_column("Binary size", justify="right")

    for entry in report.per_version_results:
        label, style = _STATUS_STYLES[entry.status.value]
        duration = size = "-"
        if entry.probe is not None:
            duration = format_elapsed(entry.probe.duration_ms / 1000)
            size = format_size(entry.probe.artifact_size_bytes)
        marker = ""
        if entry.identifier == report.works:
            marker = " (works)"
        elif entry.identifier == report.fails:
            marker = " (fails)"
        table.add_row(entry.identifier, Text(label + marker, style=style), duration, size)
    return table


def _outcome_text(report: "BisectReport") -> Text:
    text = Text()
    outcome = report.outcome

    if outcome is None:
        reason = report.skip_reason.value if report.skip_reason else "unknown"
        text.append("Commit bisect skipped: ", style="bold yellow")
        text.append(f"{reason}\n", style="yellow")
        return text

    if outcome.found:
        meta = outcome.metadata
        text.append("Breaking commit: ", style="bold")
        text.append(f"{outcome.breaking_revision}\n", style="cyan bold")
        text.append(f"  {commit_url(outcome.breaking_revision)}\n", style="blue underline")
        if meta is None:
            text.append("Commit metadata unavailable\n", style="yellow")
        else:
            text.append(f"{meta.author} introduced a bug at {meta.timestamp} with message:\n")
            text.append(f"{meta.message}\n\n", style="italic")
            text.append("The bug is in the files:\n", style="bold")
            for path in meta.changed_files:
                text.append(f"  {path}\n")
        text.append("\nThe bug can be in the commits:\n", style="bold")
        candidates = outcome.candidates
    else:
        text.append("The commit that introduced the bug can not be found", style="bold red")
        text.append(
            " (Nim can not be re-built commit-by-commit), "
            "but the bug is in the commits:\n"
        )
        candidates = outcome.remaining_candidates

    for revision in candidates:
        text.append(f"  {revision}  ", style="cyan")
        text.append(f"{commit_url(revision)}\n", style="blue")
    if outcome.found:
        text.append("(Diagnostics sometimes off-by-one)\n", style="dim italic")
    return text


def print_final_summary(
    report: Optional["BisectReport"] = None,
    error_msg: Optional[str] = None,
    log_dir: Optional[str] = None,
    log_file: Optional[str] = None,
    command_log: Optional[str] = None,
    console: Optional[Console] = None,
) -> None:
    """
    Print the final bisect summary panel.

    Args:
        report: The finished run, None if it aborted.
        error_msg: Error message if the run aborted.
        log_dir: Directory containing log files.
        log_file: Main log file path (shown on error).
        command_log: Command log file path (shown on error).
        console: Console to print to; a new one by default.
    """
    console = console or Console()
    success = report is not None and error_msg is None

    if success:
        body = [_versions_table(report)]
        for entry in report.per_version_results:
            if entry.probe is not None and not entry.probe.success:
                body.extend(_failure_details(entry))
        body.append(Text())
        body.append(_outcome_text(report))

        stats = Text()
        stats.append("Commits considered: ", style="bold")
        stats.append(f"{report.commits_considered}  ")
        stats.append("Probes: ", style="bold")
        stats.append(f"{len(report.per_version_results) + report.commits_tested}  ")
        stats.append("Duration: ", style="bold")
        stats.append(f"{format_elapsed(report.duration_seconds)}  ")
        stats.append("Rate: ", style="bold")
        stats.append(f"{report.commits_per_second:.2f} commits/s")
        if log_dir:
            stats.append("\nLog directory: ", style="bold")
            stats.append(f"{log_dir}", style="dim")
        body.append(stats)
        title = "Bisect Result"
    else:
        text = Text()
        text.append("Bisect Failed\n\n", style="bold red")
        if error_msg:
            text.append(error_msg, style="red")
        if command_log:
            text.append("\n\nCheck command log for details:\n", style="bold")
            text.append(f"   {command_log}", style="yellow")
        if log_file:
            text.append("\nModule log: ", style="bold")
            text.append(f"{log_file}", style="dim")
        if log_dir and not command_log and not log_file:
            text.append("\n\nLog directory: ", style="bold")
            text.append(f"{log_dir}", style="dim")
        body = [text]
        title = "Bisect Failed"

    console.print()
    console.print(
        Panel(
            Group(*body),
            title=f"[bold]{title}[/bold]",
            border_style="green" if success else "red",
            padding=(1, 2),
        )
    )


def print_environment_status(
    tools: Dict[str, Optional[str]],
    console: Optional[Console] = None,
) -> None:
    """Print the host tool versions reported by EnvironmentManager."""
    console = console or Console()
    table = Table(title="Environment")
    table.add_column("Tool", style="bold")
    table.add_column("Version")
    for name, found in tools.items():
        table.add_row(name, found if found else Text("not found", style="red"))
    console.print(table)
