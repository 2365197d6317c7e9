"""Command-line interface for launch-deployer."""

from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional

from .config import DeployerConfig, load_config
from .engine import EventStream, StepExecutor, ValidationError
from .pipeline import DeployPipeline
from .replay import replay
from .utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="launch-deployer",
        description="Plan, build and deploy an application, streaming progress as JSON events.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run", help="Run the deployment pipeline configured by the environment"
    )
    run_parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file; environment variables take precedence.",
    )
    run_parser.add_argument(
        "--prefix",
        type=str,
        default=None,
        help="String written before every event record.",
    )
    run_parser.add_argument(
        "--workdir",
        type=str,
        default=None,
        help="Directory the source is pulled into and commands run from.",
    )
    run_parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Write debug diagnostics to stderr",
    )

    # state 子命令 - 从事件流重建运行状态
    state_parser = subparsers.add_parser(
        "state", help="Rebuild the latest run state from a captured event stream"
    )
    state_parser.add_argument(
        "file", nargs="?", default=None,
        help="Captured stream (default: read stdin)",
    )
    state_parser.add_argument(
        "--prefix", type=str, default="",
        help="Prefix the records were written with",
    )
    return parser


def handle_run_command(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.config)
    except (OSError, ValueError, TypeError) as exc:
        # nothing configured yet: report on a bare stream
        executor = StepExecutor(EventStream(prefix=args.prefix or ""))
        return executor.fail(ValidationError(f"invalid configuration: {exc}")).exit_code

    if args.prefix is not None:
        config.event_prefix = args.prefix
    if args.workdir is not None:
        config.workdir = args.workdir
    configure_logging("DEBUG" if args.verbose else config.log_level)

    return run_pipeline(config)


def run_pipeline(config: DeployerConfig) -> int:
    stream = EventStream(prefix=config.event_prefix)
    pipeline = DeployPipeline(config, stream)
    exit_code = pipeline.execute()
    logger.info("deployment finished with exit code %d", exit_code)
    return exit_code


def handle_state_command(args: argparse.Namespace) -> int:
    if args.file:
        try:
            with open(args.file, "r", encoding="utf-8") as handle:
                state = replay(handle, prefix=args.prefix)
        except OSError as exc:
            print(f"Cannot read stream: {exc}", file=sys.stderr)
            return 1
    else:
        state = replay(sys.stdin, prefix=args.prefix)

    print(json.dumps(state.to_dict(), indent=2, ensure_ascii=False))
    return 1 if state.failed else 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "run":
        return handle_run_command(args)
    if args.command == "state":
        return handle_state_command(args)

    parser.error(f"Unknown command: {args.command}")
    return 2
