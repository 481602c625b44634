"""CLI for a single convergence run on this node."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from .config import AgentSettings, load_settings
from .logging_utils import configure_logging
from .models import RunOutcome
from .runner import ConvergenceAgent, RunResult


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fleet convergence agent")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run one convergence transaction")
    run_parser.add_argument("--config", required=True, help="Path to agent settings YAML")
    run_parser.add_argument("--environment", default=None)
    run_parser.add_argument("--server", default=None)
    run_parser.add_argument("--server-list", default=None, help="Comma separated host[:port] entries")
    run_parser.add_argument("--waitforlock", type=float, default=None)
    run_parser.add_argument("--maxwaitforlock", type=float, default=None)
    run_parser.add_argument("--use-cached-catalog", action="store_true", default=None)
    run_parser.add_argument("--no-report", action="store_true")
    run_parser.add_argument("--verbose", action="store_true")
    run_parser.add_argument("--log-file", action="append", default=None)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.error("a command is required (try 'run')")
    return args


def settings_from_args(args: argparse.Namespace) -> AgentSettings:
    return load_settings(
        Path(args.config),
        environment=args.environment,
        server=args.server,
        server_list=args.server_list,
        wait_for_lock_seconds=args.waitforlock,
        max_wait_for_lock_seconds=args.maxwaitforlock,
        use_cached_catalog=args.use_cached_catalog,
        report=False if args.no_report else None,
    )


def exit_code(result: RunResult) -> int:
    if result.outcome == RunOutcome.NO_CHANGES:
        return 0
    if result.outcome == RunOutcome.APPLIED_WITH_CHANGES:
        return 2
    if result.outcome == RunOutcome.FAILED and result.report is not None:
        metrics = result.report.metrics
        if metrics.failed or metrics.skipped:
            return 6 if metrics.changed else 4
    return 1


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = settings_from_args(args)
    level = logging.DEBUG if args.verbose else settings.log_level_value
    configure_logging(level, log_paths=args.log_file)
    logging.getLogger("fleet_agent").setLevel(min(level, logging.INFO))
    result = ConvergenceAgent(settings).run()
    if result.message:
        print(result.message)
    raise SystemExit(exit_code(result))


if __name__ == "__main__":
    main()
