#!/usr/bin/env python3
"""AQA Publisher.

Computes the AQA reference rate from the 30-day average SOFR published by
FRED, the NY Fed and OFR, and submits it once a day as a validator vote to
the Hyperliquid exchange.

Configure via CLI args or env vars. A .env file in the working directory is
loaded first; see .env.example for the available settings.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

from dotenv import load_dotenv

from .src.Failure import EXIT_CONFIG_ERROR, EXIT_OK, Failure, FailureKind, PersistentFailureError
from .src.fetchers import get_available_fetchers
from .src.Publisher import Publisher
from .src.PublisherDryRun import PublisherDryRun
from .src.PublisherHyperliquid import EXCHANGE_URLS, PublisherHyperliquid, load_signers
from .src.RateOracle import (
    DEFAULT_FETCH_TIMEOUT,
    DEFAULT_MAX_CONSECUTIVE_FAILURES,
    DEFAULT_RUN_TIMEOUT,
    DEFAULT_SOURCES,
    RateOracle,
)
from .src.scaling import format_scaled_rate
from .src.ScheduleState import DEFAULT_EXECUTION_HOUR_UTC

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

COMMANDS = ("daemon", "once", "current", "verify")

TRUTHY = {"1", "true", "yes", "on"}


def env_flag(name: str) -> bool:
    """Whether an environment variable is set to a truthy value."""
    return (os.environ.get(name) or "").strip().lower() in TRUTHY


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI parser with environment-variable defaults.

    :raises ValueError: If a numeric environment variable is malformed.
    """
    available_sources = get_available_fetchers()

    parser = argparse.ArgumentParser(
        prog="aqa-publisher",
        description="AQA Publisher: Multi-source SOFR reference rate votes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Commands:
  daemon    Publish every day at the execution hour (default)
  once      Collect, aggregate and publish a single time
  current   Print the current reference rate without publishing
  verify    Compare FRED/NY Fed averages with their overnight series

Available rate sources:
  {', '.join(available_sources)}

Examples:
  # Run the daily publisher against testnet
  PUBLISHER_PRIVATE_KEY=0x... python -m aqa_publisher.main daemon --network testnet

  # Show what would be published today
  python -m aqa_publisher.main current

  # Publish once without submitting anything
  python -m aqa_publisher.main once --dry-run

Environment variables (CLI args take precedence):
  PUBLISHER_PRIVATE_KEY, NETWORK, SOURCES, EXECUTION_HOUR_UTC,
  MAX_CONSECUTIVE_FAILURES, FETCH_TIMEOUT, RUN_TIMEOUT, DRY_RUN
""",
    )

    parser.add_argument(
        "command",
        nargs="?",
        choices=COMMANDS,
        default="daemon",
        help="What to do (default: daemon)",
    )

    parser.add_argument(
        "--network",
        type=str,
        help=f"Exchange network ({', '.join(EXCHANGE_URLS)}, default: mainnet)",
        default=os.environ.get("NETWORK") or "mainnet",
    )

    parser.add_argument(
        "--sources",
        type=str,
        help=f"Comma-separated rate sources. Available: {', '.join(available_sources)}",
        default=os.environ.get("SOURCES") or ",".join(DEFAULT_SOURCES),
    )

    parser.add_argument(
        "--execution-hour",
        dest="execution_hour",
        type=int,
        help="UTC hour of the daily run (default: 22)",
        default=int(os.environ.get("EXECUTION_HOUR_UTC") or DEFAULT_EXECUTION_HOUR_UTC),
    )

    parser.add_argument(
        "--max-consecutive-failures",
        dest="max_consecutive_failures",
        type=int,
        help="Failed runs tolerated before the daemon exits (default: 3)",
        default=int(
            os.environ.get("MAX_CONSECUTIVE_FAILURES") or DEFAULT_MAX_CONSECUTIVE_FAILURES
        ),
    )

    parser.add_argument(
        "--fetch-timeout",
        dest="fetch_timeout",
        type=float,
        help="Timeout for each source fetch in seconds (default: 30)",
        default=float(os.environ.get("FETCH_TIMEOUT") or DEFAULT_FETCH_TIMEOUT),
    )

    parser.add_argument(
        "--run-timeout",
        dest="run_timeout",
        type=float,
        help="Timeout for a whole collect-aggregate-publish run in seconds (default: 300)",
        default=float(os.environ.get("RUN_TIMEOUT") or DEFAULT_RUN_TIMEOUT),
    )

    parser.add_argument(
        "--dry-run",
        dest="dry_run",
        action="store_true",
        help="Log the vote instead of submitting it",
        default=env_flag("DRY_RUN"),
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    return parser


def build_publisher(args: argparse.Namespace) -> Publisher:
    """Create the publisher for the parsed arguments.

    ``current`` and ``verify`` never publish, so they need no keys.

    :raises ValueError: If keys are missing or invalid, or the network is unknown.
    """
    if args.dry_run or args.command in ("current", "verify"):
        return PublisherDryRun()
    signers = load_signers(os.environ.get("PUBLISHER_PRIVATE_KEY"))
    return PublisherHyperliquid(signers, network=args.network)


def log_banner(args: argparse.Namespace, sources: list[str], publisher: Publisher) -> None:
    logger.info("=" * 60)
    logger.info("AQA Publisher - SOFR Reference Rate")
    logger.info("=" * 60)
    logger.info(f"Command:           {args.command}")
    logger.info(f"Network:           {args.network}")
    logger.info(f"Publisher:         {publisher.description}")
    logger.info(f"Sources:           {', '.join(sources)}")
    logger.info(f"Execution Hour:    {args.execution_hour:02d}:00 UTC")
    logger.info(f"Max Failures:      {args.max_consecutive_failures}")
    logger.info(f"Fetch Timeout:     {args.fetch_timeout}s")
    logger.info(f"Run Timeout:       {args.run_timeout}s")
    logger.info("=" * 60)


async def run_daemon(oracle: RateOracle) -> int:
    """Run the daily loop until SIGINT/SIGTERM or a persistent failure."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await oracle.run_forever(stop_event)
    except PersistentFailureError as e:
        logger.critical(f"Fatal error: {e}")
        return e.failure.exit_code
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)

    logger.info("Shutting down...")
    return EXIT_OK


async def run_command(args: argparse.Namespace, oracle: RateOracle) -> int:
    """Dispatch a parsed command and return the process exit code."""
    try:
        if args.command == "daemon":
            return await run_daemon(oracle)

        if args.command == "once":
            outcome = await oracle.run_once()
            if isinstance(outcome, Failure):
                logger.error(f"Run failed: {outcome}")
                return outcome.exit_code
            logger.info(f"Published reference rate {outcome}")
            return EXIT_OK

        if args.command == "current":
            outcome = await oracle.compute()
            if isinstance(outcome, Failure):
                logger.error(f"Could not compute reference rate: {outcome}")
                return outcome.exit_code
            print(f"Median SOFR 30-day average: {format_scaled_rate(outcome.median_rate_scaled)}")
            print(f"AQA reference rate:         {format_scaled_rate(outcome.reference_rate_scaled)}")
            print(f"Data as of:                 {outcome.as_of}")
            return EXIT_OK

        # verify
        results = await oracle.verify()
        failures = [r for r in results.values() if isinstance(r, Failure)]
        for source, result in results.items():
            if isinstance(result, Failure):
                print(f"{source}: {result}")
            else:
                print(
                    f"{source}: {result.effective_date} published "
                    f"{format_scaled_rate(result.published_scaled)} computed "
                    f"{format_scaled_rate(result.computed_scaled)} "
                    f"(difference {result.difference})"
                )
        if failures or not results:
            return FailureKind.SOURCE_UNAVAILABLE.exit_code
        return EXIT_OK
    finally:
        await oracle.close()


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the AQA Publisher CLI."""
    load_dotenv()

    try:
        parser = build_parser()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(EXIT_CONFIG_ERROR)

    args = parser.parse_args(argv)

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    sources = [s.strip().lower() for s in args.sources.split(",") if s.strip()]

    try:
        if not sources:
            raise ValueError("At least one source must be specified")
        publisher = build_publisher(args)
        oracle = RateOracle(
            publisher=publisher,
            sources=sources,
            fetch_timeout=args.fetch_timeout,
            run_timeout=args.run_timeout,
            execution_hour=args.execution_hour,
            max_consecutive_failures=args.max_consecutive_failures,
        )
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(EXIT_CONFIG_ERROR)

    log_banner(args, sources, publisher)

    try:
        code = asyncio.run(run_command(args, oracle))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
        code = EXIT_OK
    sys.exit(code)


if __name__ == "__main__":
    main()
