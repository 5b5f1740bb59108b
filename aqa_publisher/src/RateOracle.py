"""RateOracle: Main orchestrator for the daily AQA reference rate.

This module collects the 30-day average SOFR from every configured source,
validates and aggregates the observations, derives the reference rate and
hands it to a publisher once per day.

Architecture:
    - RateCollector fans out to all sources behind a single barrier
    - RateAggregator applies quorum, agreement, plausibility and staleness
    - The median is basis-adjusted and scaled into the reference rate
    - The daemon loop sleeps until the next daily trigger, runs, and repeats
    - Consecutive failed runs beyond a threshold are fatal
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum

from .CompoundingCalculator import InsufficientCoverageError, compute_compounded_average
from .Failure import Failure, FailureKind, PersistentFailureError
from .fetchers import BaseFetcher, FetcherError, get_available_fetchers, get_fetcher
from .Publisher import Publisher
from .RateAggregator import AggregationResult, RateAggregator
from .RateCollector import RateCollector
from .scaling import format_scaled_rate, reference_rate
from .ScheduleState import (
    DEFAULT_EXECUTION_HOUR_UTC,
    ScheduleState,
    format_duration,
    next_trigger_after,
)

logger = logging.getLogger(__name__)

DEFAULT_SOURCES = ["fred", "nyfed", "ofr"]
DEFAULT_FETCH_TIMEOUT = 30.0
DEFAULT_RUN_TIMEOUT = 300.0
DEFAULT_MAX_CONSECUTIVE_FAILURES = 3

# Sources publishing both an average and its overnight series.
VERIFIABLE_SOURCES = ("fred", "nyfed")

Clock = Callable[[], datetime]
Waiter = Callable[[float, asyncio.Event], Awaitable[bool]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def wait_for_stop(delay: float, stop_event: asyncio.Event) -> bool:
    """Wait up to ``delay`` seconds, returning early if stop is requested.

    :returns: True if the stop event was set.
    """
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=max(0.0, delay))
    except asyncio.TimeoutError:
        return False
    return True


class DaemonState(str, Enum):
    IDLE = "idle"
    SLEEPING = "sleeping"
    RUNNING = "running"
    FATAL = "fatal"


@dataclass(frozen=True)
class ReferenceRate:
    """A validated median and the reference rate derived from it.

    :ivar aggregation: Result of the aggregation engine.
    :ivar reference_rate_scaled: Rate to publish, in scaled units.
    """

    aggregation: AggregationResult
    reference_rate_scaled: int

    @property
    def median_rate_scaled(self) -> int:
        return self.aggregation.median_rate_scaled

    @property
    def as_of(self) -> date:
        return self.aggregation.median_date

    @classmethod
    def from_aggregation(cls, aggregation: AggregationResult) -> ReferenceRate:
        return cls(
            aggregation=aggregation,
            reference_rate_scaled=reference_rate(aggregation.median_rate_scaled),
        )

    def __str__(self) -> str:
        return (
            f"{format_scaled_rate(self.reference_rate_scaled)} "
            f"(median SOFR 30d avg {format_scaled_rate(self.median_rate_scaled)}, "
            f"as of {self.as_of}, {self.aggregation.contributing_sources} sources)"
        )


@dataclass(frozen=True)
class VerificationResult:
    """A provider's published 30-day average against our compounded one.

    :ivar source: Source name.
    :ivar effective_date: Date of the published average.
    :ivar published_scaled: Average as published by the provider.
    :ivar computed_scaled: Average compounded from the provider's overnight rates.
    """

    source: str
    effective_date: date
    published_scaled: int
    computed_scaled: int

    @property
    def difference(self) -> int:
        return self.computed_scaled - self.published_scaled


class RateOracle:
    """Main orchestrator for the AQA reference rate.

    :ivar sources: List of rate source names.
    :ivar fetchers: Dict mapping source names to fetcher instances.
    :ivar publisher: Destination for the reference rate.
    :ivar aggregator: Validation and median engine.
    :ivar run_timeout: Upper bound on one collect-aggregate-publish run.
    :ivar execution_hour: UTC hour of the daily run.
    :ivar max_consecutive_failures: Failed runs tolerated before giving up.
    :ivar state: Current daemon state.
    """

    def __init__(
        self,
        publisher: Publisher,
        sources: list[str] | None = None,
        fetchers: dict[str, BaseFetcher] | None = None,
        aggregator: RateAggregator | None = None,
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
        run_timeout: float = DEFAULT_RUN_TIMEOUT,
        execution_hour: int = DEFAULT_EXECUTION_HOUR_UTC,
        max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES,
        clock: Clock | None = None,
        waiter: Waiter | None = None,
    ) -> None:
        """Initialize the rate oracle.

        :param publisher: Publisher receiving the reference rate.
        :param sources: Source names (default: fred, nyfed, ofr). Ignored
            when ``fetchers`` is given.
        :param fetchers: Pre-built fetchers keyed by source name.
        :param aggregator: Aggregation engine (default tolerances if omitted).
        :param fetch_timeout: Timeout per source fetch in seconds (default: 30).
        :param run_timeout: Timeout for a whole run in seconds (default: 300).
        :param execution_hour: UTC hour of the daily run (default: 22).
        :param max_consecutive_failures: Threshold above which the daemon
            stops (default: 3).
        :param clock: Callable returning the current aware datetime.
        :param waiter: Coroutine ``(seconds, stop_event) -> stopped`` used to
            sleep until the next trigger.
        :raises ValueError: If sources or limits are invalid.
        """
        if fetchers is None:
            sources = sources if sources is not None else DEFAULT_SOURCES
            available = get_available_fetchers()
            invalid = [s for s in sources if s not in available]
            if invalid:
                raise ValueError(f"Unknown sources: {invalid}. Available: {available}")
            fetchers = {s: get_fetcher(s, timeout=fetch_timeout) for s in sources}
        if not fetchers:
            raise ValueError("At least one source must be specified")
        if not 0 <= execution_hour <= 23:
            raise ValueError("execution_hour must be in 0..23")
        if max_consecutive_failures < 0:
            raise ValueError("max_consecutive_failures must be non-negative")
        if fetch_timeout <= 0 or run_timeout <= 0:
            raise ValueError("timeouts must be positive")

        self.fetchers = fetchers
        self.sources = list(fetchers)
        self.publisher = publisher
        self.aggregator = aggregator or RateAggregator()
        self.collector = RateCollector(fetchers=fetchers, fetch_timeout=fetch_timeout)
        self.run_timeout = run_timeout
        self.execution_hour = execution_hour
        self.max_consecutive_failures = max_consecutive_failures
        self.clock = clock or utc_now
        self.waiter = waiter or wait_for_stop
        self.state = DaemonState.IDLE

        logger.info(
            f"RateOracle initialized: sources={self.sources}, "
            f"publisher={publisher.description}, "
            f"execution_hour={execution_hour:02d}:00 UTC"
        )

    def today(self) -> date:
        return self.clock().astimezone(timezone.utc).date()

    async def compute(self, query_date: date | None = None) -> ReferenceRate | Failure:
        """Collect, aggregate and derive the reference rate without publishing.

        :param query_date: Day to compute for (default: today, UTC).
        :returns: ReferenceRate, or the Failure that stopped it.
        """
        query_date = query_date or self.today()
        results = await self.collector.collect(query_date)

        for source, result in results.items():
            if isinstance(result, Failure):
                logger.warning(f"[{source}] {result.message}")
            else:
                logger.info(f"[{source}] {result}")

        outcome = self.aggregator.aggregate(query_date, list(results.values()))
        if isinstance(outcome, Failure):
            return outcome

        rate = ReferenceRate.from_aggregation(outcome)
        logger.info(
            f"Median {format_scaled_rate(outcome.median_rate_scaled)} from "
            f"{outcome.contributing_sources} sources "
            f"({outcome.agreeing_pairs} agreeing pairs), as of {outcome.median_date}"
        )
        return rate

    async def _run(self, query_date: date) -> ReferenceRate | Failure:
        outcome = await self.compute(query_date)
        if isinstance(outcome, Failure):
            return outcome

        logger.info(f"Publishing reference rate {outcome}")
        result = await self.publisher.publish(outcome.reference_rate_scaled, outcome.as_of)
        failure = result.to_failure()
        return failure if failure is not None else outcome

    async def run_once(self, query_date: date | None = None) -> ReferenceRate | Failure:
        """Run collect, aggregate and publish once, bounded by ``run_timeout``.

        :param query_date: Day to run for (default: today, UTC).
        :returns: The published ReferenceRate, or the Failure that stopped it.
        """
        query_date = query_date or self.today()
        try:
            return await asyncio.wait_for(self._run(query_date), timeout=self.run_timeout)
        except asyncio.TimeoutError:
            return Failure(
                FailureKind.SOURCE_UNAVAILABLE,
                f"run timed out after {self.run_timeout}s",
                {"query_date": query_date.isoformat(), "timeout": self.run_timeout},
            )

    async def diagnose(self) -> ReferenceRate | Failure:
        """Startup pass: compute and log the rate, never publish.

        Bounded by ``run_timeout`` like a scheduled run.
        """
        logger.info("Running startup diagnostic (not published)")
        try:
            outcome = await asyncio.wait_for(self.compute(), timeout=self.run_timeout)
        except asyncio.TimeoutError:
            outcome = Failure(
                FailureKind.SOURCE_UNAVAILABLE,
                f"diagnostic timed out after {self.run_timeout}s",
                {"timeout": self.run_timeout},
            )
        if isinstance(outcome, Failure):
            logger.warning(f"Startup diagnostic failed: {outcome}")
        else:
            logger.info(f"Startup diagnostic: reference rate {outcome}")
        return outcome

    async def _sleep_until(self, trigger: datetime, stop_event: asyncio.Event) -> bool:
        """Sleep until ``trigger``; returns True if stopped first."""
        while True:
            remaining = (trigger - self.clock()).total_seconds()
            if remaining <= 0:
                return stop_event.is_set()
            if await self.waiter(remaining, stop_event):
                return True

    async def run_forever(
        self,
        stop_event: asyncio.Event | None = None,
        schedule: ScheduleState | None = None,
    ) -> ScheduleState:
        """Run the daily publishing loop until stopped.

        :param stop_event: Set to request shutdown (e.g. from a signal handler).
        :param schedule: State to update (a fresh one if omitted).
        :returns: Final schedule state after a requested shutdown.
        :raises PersistentFailureError: When consecutive failures exceed
            ``max_consecutive_failures``.
        """
        stop_event = stop_event or asyncio.Event()
        schedule = schedule or ScheduleState()

        await self.diagnose()

        while not stop_event.is_set():
            now = self.clock()
            schedule.next_trigger = next_trigger_after(now, self.execution_hour)
            self.state = DaemonState.SLEEPING
            logger.info(
                f"Next execution at {schedule.next_trigger:%Y-%m-%d %H:%M:%S} UTC "
                f"(in {format_duration(schedule.next_trigger - now)})"
            )

            if await self._sleep_until(schedule.next_trigger, stop_event):
                break

            self.state = DaemonState.RUNNING
            logger.info(f"Starting scheduled run for {schedule.next_trigger:%Y-%m-%d}")
            outcome = await self.run_once()

            if isinstance(outcome, Failure):
                count = schedule.record_failure(outcome)
                logger.error(
                    f"Scheduled run failed ({count} consecutive): {outcome}"
                )
                if count > self.max_consecutive_failures:
                    self.state = DaemonState.FATAL
                    logger.critical(
                        f"Exceeded {self.max_consecutive_failures} consecutive failures, "
                        f"giving up"
                    )
                    raise PersistentFailureError(count, outcome)
            else:
                schedule.record_success()
                logger.info(f"Scheduled run published {outcome}")

            self.state = DaemonState.IDLE

        self.state = DaemonState.IDLE
        logger.info(
            f"Stopped after {schedule.total_runs} runs "
            f"({schedule.total_failures} failed)"
        )
        return schedule

    async def verify(
        self, query_date: date | None = None
    ) -> dict[str, VerificationResult | Failure]:
        """Check each provider's published average against its overnight series.

        :param query_date: Day to verify for (default: today, UTC).
        :returns: Dict mapping source name to a comparison or a Failure.
        """
        query_date = query_date or self.today()
        results: dict[str, VerificationResult | Failure] = {}

        for source in VERIFIABLE_SOURCES:
            fetcher = self.fetchers.get(source)
            if fetcher is None:
                continue
            try:
                published = await fetcher.collect(query_date)
                overnight = await fetcher.fetch_overnight_rates(query_date)
                computed = compute_compounded_average(
                    published.observation_date, overnight
                )
            except (FetcherError, InsufficientCoverageError, KeyError, ValueError) as e:
                logger.warning(f"[{source}] Verification failed: {e}")
                results[source] = Failure(
                    FailureKind.SOURCE_UNAVAILABLE,
                    f"{source}: {e}",
                    {"source": source, "query_date": query_date.isoformat()},
                )
                continue

            result = VerificationResult(
                source=source,
                effective_date=published.observation_date,
                published_scaled=published.rate_scaled,
                computed_scaled=computed,
            )
            logger.info(
                f"[{source}] {result.effective_date}: published "
                f"{format_scaled_rate(result.published_scaled)}, computed "
                f"{format_scaled_rate(result.computed_scaled)}, "
                f"difference {result.difference} scaled units"
            )
            results[source] = result

        return results

    async def close(self) -> None:
        await BaseFetcher.close_shared_client()
