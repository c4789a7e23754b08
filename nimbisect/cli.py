#!/usr/bin/env python3
# Copyright (c) Meta Platforms, Inc. and affiliates.

"""
Command-line interface for nimbisect.

Usage Examples:
    # Probe the default version matrix and bisect if it shows a regression
    nimbisect bisect --snippet test.nim --cmd "c --mm:orc"

    # Custom matrix, probed in the given order
    nimbisect bisect --snippet test.nim --cmd "c" --versions devel,2.0.0,1.6.0

    # Scan every commit of the window instead of halving it
    nimbisect bisect --snippet test.nim --cmd "cpp -d:release" --linear

    # Show host tool versions / clone the Nim repository ahead of time
    nimbisect env
    nimbisect env --setup --nim-dir ./Nim
"""

import argparse
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import List

from nimbisect.command import CommandBuildError, build_probe_command
from nimbisect.config import DEFAULT_VERSIONS, BisectConfig


def _get_package_version() -> str:
    try:
        return version("nimbisect")
    except PackageNotFoundError:
        return "0+unknown"


def _parse_versions(value: str) -> List[str]:
    versions = [v.strip() for v in value.split(",") if v.strip()]
    if not versions:
        raise argparse.ArgumentTypeError("--versions must name at least one version")
    return versions


def _add_bisect_args(parser: argparse.ArgumentParser) -> None:
    """Add arguments for the bisect subcommand."""
    parser.add_argument(
        "--snippet",
        type=str,
        help="Nim source file of the test program ('-' reads stdin)",
    )
    parser.add_argument(
        "--cmd",
        type=str,
        default="c",
        help="Compile command: c|cpp|js followed by compiler switches (default: c)",
    )
    parser.add_argument(
        "--versions",
        type=_parse_versions,
        default=list(DEFAULT_VERSIONS),
        help="Comma-separated toolchain identifiers, probed in this order "
        f"(default: {','.join(DEFAULT_VERSIONS)})",
    )
    parser.add_argument(
        "--work-dir",
        type=str,
        default=".",
        help="Directory for the snippet, nimcache and binary (default: .)",
    )
    parser.add_argument(
        "--nim-dir",
        type=str,
        default=None,
        help="Nim repository checkout (default: <work-dir>/Nim, cloned if missing)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default="./bisect_logs",
        help="Directory for log files (default: ./bisect_logs)",
    )
    parser.add_argument(
        "--select-timeout",
        type=float,
        default=None,
        help="Timeout in seconds for each choosenim attempt",
    )
    parser.add_argument(
        "--probe-timeout",
        type=float,
        default=None,
        help="Timeout in seconds for each compile+run",
    )
    parser.add_argument(
        "--no-fuzz",
        action="store_false",
        dest="fuzz",
        help="Do not prepend the nimFuzz* constants to the snippet",
    )
    parser.add_argument(
        "--fuzz-seed",
        type=int,
        default=None,
        help="Seed for the nimFuzz* constants",
    )
    parser.add_argument(
        "--linear",
        action="store_true",
        help="Scan every commit of the window instead of halving it first",
    )

    # TUI control
    parser.add_argument(
        "--tui",
        action="store_true",
        default=True,
        dest="tui",
        help="Enable Rich TUI interface (default: enabled on a TTY)",
    )
    parser.add_argument(
        "--no-tui",
        action="store_false",
        dest="tui",
        help="Disable Rich TUI, use plain text output",
    )


def _add_env_args(parser: argparse.ArgumentParser) -> None:
    """Add arguments for the env subcommand."""
    parser.add_argument(
        "--nim-dir",
        type=str,
        default="./Nim",
        help="Nim repository checkout (default: ./Nim)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default="./bisect_logs",
        help="Directory for log files (default: ./bisect_logs)",
    )
    parser.add_argument(
        "--setup",
        action="store_true",
        help="Check required tools and clone the Nim repository if missing",
    )


def _validate_args(args: argparse.Namespace, parser: argparse.ArgumentParser) -> None:
    """
    Validate bisect arguments.

    Args:
        args: Parsed arguments.
        parser: ArgumentParser for error reporting.
    """
    if not args.snippet:
        parser.error("The following arguments are required: --snippet")
    if args.snippet != "-" and not Path(args.snippet).is_file():
        parser.error(f"Snippet file not found: {args.snippet}")
    try:
        build_probe_command(args.cmd, Path(args.work_dir))
    except CommandBuildError as e:
        parser.error(str(e))


def _read_snippet(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text()


def _build_config(args: argparse.Namespace) -> BisectConfig:
    return BisectConfig(
        work_dir=Path(args.work_dir),
        nim_dir=Path(args.nim_dir) if args.nim_dir else None,
        log_dir=args.log_dir,
        versions=list(args.versions),
        select_timeout=args.select_timeout,
        probe_timeout=args.probe_timeout,
        fuzz=args.fuzz,
        fuzz_seed=args.fuzz_seed,
        assume_monotonic=not args.linear,
    )


def bisect_command(args: argparse.Namespace) -> int:
    """
    Execute the bisect command.

    Args:
        args: Parsed command-line arguments.

    Returns:
        Exit code: 0 when the run completed (whatever it found), 1 otherwise.
    """
    from nimbisect.logger import BisectLogger
    from nimbisect.ui import BisectUI, print_final_summary
    from nimbisect.workflow import BisectWorkflow

    snippet = _read_snippet(args.snippet)
    config = _build_config(args)

    ui = BisectUI(enabled=args.tui)
    report = None
    error_msg = None
    logger = None

    with ui:
        try:
            logger = BisectLogger(config.log_dir)
            if ui.is_tui_enabled:
                logger.configure_for_tui(ui.create_output_callback())

            ui.append_output(ui.get_tui_status_message())
            ui.update_progress(
                log_dir=str(logger.log_dir),
                log_file=logger.module_log_path.name,
                command_log=logger.command_log_path.name,
            )

            workflow = BisectWorkflow(config, logger=logger, ui=ui)
            report = workflow.run(snippet, args.cmd)

        except Exception as e:
            error_msg = str(e)
            ui.append_output(f"\nUnexpected error: {e}")
            if logger is not None:
                logger.exception("Bisect aborted")

    print_final_summary(
        report=report,
        error_msg=error_msg,
        log_dir=config.log_dir,
        log_file=str(logger.module_log_path) if logger else None,
        command_log=str(logger.command_log_path) if logger else None,
    )
    return 0 if report is not None and error_msg is None else 1


def env_command(args: argparse.Namespace) -> int:
    """Execute the env command: print tool versions, optionally set up."""
    from nimbisect.environment import EnvironmentManager, EnvironmentSetupError
    from nimbisect.git_utils import RevisionHistoryError
    from nimbisect.logger import BisectLogger
    from nimbisect.ui import print_environment_status

    logger = BisectLogger(args.log_dir)
    manager = EnvironmentManager(Path(args.nim_dir), logger)
    print_environment_status(manager.host_tool_versions())

    if not args.setup:
        return 0
    try:
        manager.ensure_environment()
    except (EnvironmentSetupError, RevisionHistoryError) as e:
        logger.error(str(e))
        return 1
    return 0


def main() -> None:
    pkg_version = _get_package_version()

    parser = argparse.ArgumentParser(
        prog="nimbisect",
        description="nimbisect: find the Nim commit that broke a snippet",
        epilog=(
            "Examples:\n"
            "  nimbisect bisect --snippet test.nim --cmd 'c --mm:orc'\n"
            "  nimbisect bisect --snippet test.nim --versions devel,2.0.0,1.6.0\n"
            "  nimbisect env --setup\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {pkg_version}",
        help="Show program's version number and exit",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    bisect_parser = subparsers.add_parser(
        "bisect",
        help="Probe a version matrix and bisect the breaking commit",
        description=(
            "Probe the snippet against each version in order. If one version\n"
            "passes and another fails, bisect the Nim commits between the first\n"
            "passing and the first failing version."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_bisect_args(bisect_parser)
    bisect_parser.set_defaults(func="bisect")

    env_parser = subparsers.add_parser(
        "env",
        help="Show host tool versions and prepare the Nim checkout",
    )
    _add_env_args(env_parser)
    env_parser.set_defaults(func="env")

    args = parser.parse_args()

    if args.func == "bisect":
        _validate_args(args, bisect_parser)
        raise SystemExit(bisect_command(args))
    elif args.func == "env":
        raise SystemExit(env_command(args))
    else:
        raise RuntimeError(f"Unknown command: {args.func}")


if __name__ == "__main__":
    main()  # pragma: no cover
