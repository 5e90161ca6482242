"""CLI entry point for the parallel WebDriver smoke test."""

import argparse
import asyncio
import json
import logging
import os
import sys
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError

from webgrid_smoke.dispatcher import Dispatcher
from webgrid_smoke.models.config import DispatchConfig
from webgrid_smoke.models.result import AggregateResult
from webgrid_smoke.webdriver import WebDriverClient
from webgrid_smoke.workload import SearchWorkload, Workload

EXIT_CONFIG_ERROR = 2

STATUS_SYMBOLS = {
    "success": "✓",
    "failure": "✗",
    "timeout": "⏱",
}


def log_results_summary(log: logging.Logger, result: AggregateResult) -> None:
    """Log a formatted summary of session outcomes."""
    log.info("=" * 80)
    log.info("Session Results Summary:")
    log.info("=" * 80)

    for outcome in sorted(result.outcomes, key=lambda o: o.fork):
        symbol = STATUS_SYMBOLS.get(outcome.status, "?")
        log.info(
            "%s fork #%d: %s (%.2fs)",
            symbol,
            outcome.fork,
            outcome.status,
            outcome.duration,
        )
        if outcome.session_id:
            log.info("  Session: %s", outcome.session_id)
        if outcome.message:
            log.info("  Message: %s", outcome.message)

    log.info(
        "%d / %d succeeded, %d failed, %d timed out",
        result.passed,
        result.total,
        result.failed,
        result.timeouts,
    )


def format_output(result: AggregateResult) -> dict[str, Any]:
    """Format the aggregate result for JSON output."""
    return {
        "total": result.total,
        "passed": result.passed,
        "failed": result.failed,
        "timeouts": result.timeouts,
        "failures_by_stage": dict(result.failures_by_stage),
        "results": [
            {
                "fork": outcome.fork,
                "status": outcome.status,
                "duration": outcome.duration,
                "stage": outcome.stage,
                "message": outcome.message,
                "session_id": outcome.session_id,
            }
            for outcome in sorted(result.outcomes, key=lambda o: o.fork)
        ],
    }


async def run(config: DispatchConfig, workload: Workload | None = None) -> int:
    """Dispatch all sessions and return exit code."""
    log = logging.getLogger("webgrid_smoke")

    async with WebDriverClient.from_config(config) as client:
        dispatcher = Dispatcher(client=client, workload=workload or SearchWorkload())
        result = await dispatcher.dispatch(config)

        # Report before the client waits for abandoned sessions on exit
        log_results_summary(log, result)

        print(json.dumps(format_output(result), indent=2), flush=True)

    return 0 if result.succeeded else 1


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser; defaults fall back to environment variables."""
    parser = argparse.ArgumentParser(
        description="Run concurrent browser sessions against a WebDriver endpoint"
    )
    parser.add_argument(
        "endpoint",
        nargs="?",
        default=os.environ.get("ENDPOINT"),
        help="WebDriver endpoint URL (env: ENDPOINT)",
    )
    parser.add_argument(
        "forks",
        nargs="?",
        type=int,
        default=os.environ.get("FORKS"),
        help="Number of concurrent sessions (env: FORKS)",
    )
    parser.add_argument(
        "browser",
        nargs="?",
        default=os.environ.get("BROWSER", "firefox"),
        help="Browser to request: firefox, chrome or safari (env: BROWSER)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=os.environ.get("TIMEOUT", "600"),
        help="Per-session timeout in seconds (env: TIMEOUT, default: 600)",
    )
    parser.add_argument(
        "--stagger",
        type=float,
        default=0.025,
        help="Seconds between consecutive session starts (default: 0.025)",
    )
    parser.add_argument(
        "--cleanup-grace",
        type=float,
        default=5.0,
        help="Seconds to wait for deletion of timed out sessions (default: 5)",
    )
    parser.add_argument("--name", default="test-name", help="Session name metadata")
    parser.add_argument(
        "--build", default="test-build", help="Session build metadata"
    )
    parser.add_argument(
        "--target-url",
        default=SearchWorkload.url,
        help="Page the workload searches on",
    )
    parser.add_argument(
        "--query", default=SearchWorkload.query, help="Search term to type"
    )
    parser.add_argument(
        "--expect",
        default=SearchWorkload.expected_text,
        help="Text one of the results must contain",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    return parser


def build_config(args: argparse.Namespace) -> DispatchConfig:
    """Validate parsed arguments into a dispatch configuration.

    Raises:
        ValidationError: If any value is out of range or malformed

    """
    return DispatchConfig(
        endpoint=args.endpoint,
        fork_count=args.forks,
        browser=args.browser,
        timeout=args.timeout,
        stagger=args.stagger,
        session_name=args.name,
        session_build=args.build,
        cleanup_grace=args.cleanup_grace,
    )


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.endpoint is None or args.forks is None:
        parser.error("endpoint and forks are required (or set ENDPOINT and FORKS)")

    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    log = logging.getLogger("webgrid_smoke")

    try:
        config = build_config(args)
    except ValidationError as e:
        log.error("Invalid configuration:\n%s", e)
        sys.exit(EXIT_CONFIG_ERROR)

    workload = SearchWorkload(
        url=args.target_url, query=args.query, expected_text=args.expect
    )

    exit_code = asyncio.run(run(config, workload))
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
