# Copyright (c) Meta Platforms, Inc. and affiliates.

"""
Dual logging system for bisect runs.

Provides separate logging for:
- Module logs: Python logging -> stdout + file
- Command logs: choosenim / nim / git output -> file
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional


class _CallbackHandler(logging.Handler):
    """Forward formatted records to a line callback (used by the TUI)."""

    def __init__(self, callback: Callable[[str], None]) -> None:
        super().__init__()
        self._callback = callback

    def emit(self, record: logging.LogRecord) -> None:
        self._callback(self.format(record))


class BisectLogger:
    """
    Dual logging system for bisect runs.

    This logger provides two separate logging streams:
    1. Module logs: Standard Python logging output to both stdout and a log file
    2. Command logs: Subprocess output written to a separate file

    Example:
        >>> logger = BisectLogger("./bisect_logs")
        >>> logger.info("Probing devel...")
        >>> logger.log_command_output("nim c --run temp.nim", "output...", 0)
    """

    FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(
        self,
        log_dir: str,
        session_name: Optional[str] = None,
    ) -> None:
        """
        Initialize the dual logging system.

        Args:
            log_dir: Directory path where log files will be stored.
            session_name: Optional session identifier. If not provided,
                         a timestamp will be used (format: YYYYMMDD_HHMMSS).
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        if session_name is None:
            session_name = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.session_name = session_name

        self.module_log_path = self.log_dir / f"{session_name}_bisect.log"
        self._stream_handler: Optional[logging.Handler] = None
        self._setup_module_logger()

        self.command_log_path = self.log_dir / f"{session_name}_bisect_commands.log"

        self.info(f"Log directory: {self.log_dir}")
        self.info(f"  Module log: {self.module_log_path.name}")
        self.info(f"  Command log: {self.command_log_path.name}")

    def _setup_module_logger(self) -> None:
        """Configure the Python logging system with file and stdout handlers."""
        self.logger = logging.getLogger(f"nimbisect.{self.session_name}")
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False

        # Prevent duplicate handlers if logger already exists
        if self.logger.handlers:
            return

        formatter = logging.Formatter(self.FORMAT, datefmt=self.DATE_FORMAT)

        fh = logging.FileHandler(self.module_log_path)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(formatter)

        sh = logging.StreamHandler()
        sh.setLevel(logging.INFO)
        sh.setFormatter(formatter)

        self.logger.addHandler(fh)
        self.logger.addHandler(sh)
        self._stream_handler = sh

    def configure_for_tui(self, callback: Callable[[str], None]) -> None:
        """
        Redirect INFO-level output from stdout to a TUI callback.

        The file handler is left untouched so the module log stays complete.

        Args:
            callback: Called with each formatted log line.
        """
        if self._stream_handler is not None:
            self.logger.removeHandler(self._stream_handler)
            self._stream_handler = None

        handler = _CallbackHandler(callback)
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(message)s"))
        self.logger.addHandler(handler)

    def close(self) -> None:
        """Detach and close all handlers of this session."""
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

    def log_command_output(
        self,
        command: str,
        output: str,
        exit_code: int,
        include_wrapper: bool = True,
    ) -> None:
        """
        Log command execution output to the command log file.

        Args:
            command: The command that was executed.
            output: Combined stdout and stderr output from the command.
            exit_code: The exit code returned by the command.
            include_wrapper: If True, include header/footer wrapper around output.
        """
        timestamp = datetime.now().strftime(self.DATE_FORMAT)

        with open(self.command_log_path, "a") as f:
            if include_wrapper:
                f.write(f"\n{'=' * 60}\n")
                f.write(f"[{timestamp}] Command: {command}\n")
                f.write(f"Exit code: {exit_code}\n")
                f.write(f"{'=' * 60}\n")
            f.write(output)
            if include_wrapper:
                f.write("\n")

    def info(self, msg: str) -> None:
        """Log an INFO level message."""
        self.logger.info(msg)

    def debug(self, msg: str) -> None:
        """Log a DEBUG level message."""
        self.logger.debug(msg)

    def warning(self, msg: str) -> None:
        """Log a WARNING level message."""
        self.logger.warning(msg)

    def error(self, msg: str) -> None:
        """Log an ERROR level message."""
        self.logger.error(msg)

    def exception(self, msg: str) -> None:
        """Log an ERROR level message with exception info."""
        self.logger.exception(msg)
