"""Unit tests for RateOracle: single runs, the daemon loop and verification."""

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from aqa_publisher.src.CompoundingCalculator import compute_compounded_average
from aqa_publisher.src.Failure import Failure, FailureKind, PersistentFailureError
from aqa_publisher.src.fetchers import BaseFetcher, FetcherError
from aqa_publisher.src.Publisher import Publisher, PublishResult, PublishStatus
from aqa_publisher.src.PublisherDryRun import PublisherDryRun
from aqa_publisher.src.RateObservation import RateObservation
from aqa_publisher.src.RateOracle import (
    DaemonState,
    RateOracle,
    ReferenceRate,
    VerificationResult,
)
from aqa_publisher.src.scaling import reference_rate
from aqa_publisher.src.ScheduleState import ScheduleState

START = datetime(2025, 10, 7, 15, 32, 50, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeWaiter:
    """Advances the fake clock instead of sleeping; stops after ``wakeups``."""

    def __init__(self, clock: FakeClock, wakeups: int) -> None:
        self.clock = clock
        self.wakeups = wakeups
        self.delays: list[float] = []

    async def __call__(self, delay: float, stop_event: asyncio.Event) -> bool:
        self.delays.append(delay)
        if len(self.delays) > self.wakeups:
            stop_event.set()
            return True
        self.clock.now += timedelta(seconds=delay)
        return False


class FakeFetcher(BaseFetcher):
    """Returns a fixed rate dated at the query day, or fails."""

    name = "fake"

    def __init__(
        self,
        source: str,
        rate: int | None,
        overnight: dict | None = None,
        delay: float = 0.0,
    ) -> None:
        super().__init__()
        self.source = source
        self.rate = rate
        self.overnight = overnight or {}
        self.delay = delay
        self.queries: list[date] = []

    async def collect(self, query_date: date) -> RateObservation:
        self.queries.append(query_date)
        await asyncio.sleep(self.delay)
        if self.rate is None:
            raise FetcherError(f"{self.source} unavailable")
        return RateObservation(self.source, query_date, self.rate)

    async def fetch_overnight_rates(self, query_date: date) -> dict[date, int]:
        if not self.overnight:
            raise FetcherError("no overnight series")
        return self.overnight


class ScriptedPublisher(Publisher):
    """Returns the scripted statuses in order."""

    def __init__(self, statuses: list[PublishStatus], delay: float = 0.0) -> None:
        self.statuses = list(statuses)
        self.delay = delay
        self.published: list[tuple[int, date]] = []

    @property
    def description(self) -> str:
        return "scripted"

    async def publish(self, rate_scaled: int, as_of: date) -> PublishResult:
        await asyncio.sleep(self.delay)
        self.published.append((rate_scaled, as_of))
        return PublishResult(status=self.statuses.pop(0), message="scripted")


def agreeing_fetchers() -> dict[str, FakeFetcher]:
    return {
        "fred": FakeFetcher("fred", 3_515_000),
        "nyfed": FakeFetcher("nyfed", 3_515_600),
        "ofr": FakeFetcher("ofr", 3_520_000),
    }


def failing_fetchers() -> dict[str, FakeFetcher]:
    return {s: FakeFetcher(s, None) for s in ("fred", "nyfed", "ofr")}


class TestRateOracleInit:
    """Test RateOracle construction."""

    def test_default_sources_from_registry(self) -> None:
        oracle = RateOracle(PublisherDryRun())
        assert oracle.sources == ["fred", "nyfed", "ofr"]
        assert oracle.state is DaemonState.IDLE

    def test_unknown_source(self) -> None:
        with pytest.raises(ValueError, match="Unknown sources"):
            RateOracle(PublisherDryRun(), sources=["fred", "ecb"])

    def test_no_sources(self) -> None:
        with pytest.raises(ValueError, match="At least one source"):
            RateOracle(PublisherDryRun(), sources=[])

    def test_invalid_limits(self) -> None:
        with pytest.raises(ValueError, match="execution_hour"):
            RateOracle(PublisherDryRun(), fetchers=agreeing_fetchers(), execution_hour=24)
        with pytest.raises(ValueError, match="max_consecutive_failures"):
            RateOracle(
                PublisherDryRun(), fetchers=agreeing_fetchers(), max_consecutive_failures=-1
            )
        with pytest.raises(ValueError, match="timeouts"):
            RateOracle(PublisherDryRun(), fetchers=agreeing_fetchers(), run_timeout=0)


class TestRateOracleRunOnce:
    """Test a single collect-aggregate-publish run."""

    def test_compute(self) -> None:
        """Compute derives the reference rate from the median."""
        oracle = RateOracle(PublisherDryRun(), fetchers=agreeing_fetchers(), clock=FakeClock())
        outcome = asyncio.run(oracle.compute())

        assert isinstance(outcome, ReferenceRate)
        assert outcome.median_rate_scaled == 3_515_600
        assert outcome.reference_rate_scaled == reference_rate(3_515_600)
        assert outcome.as_of == date(2025, 10, 7)

    def test_publishes_reference_rate(self) -> None:
        publisher = PublisherDryRun()
        oracle = RateOracle(publisher, fetchers=agreeing_fetchers(), clock=FakeClock())
        outcome = asyncio.run(oracle.run_once())

        assert isinstance(outcome, ReferenceRate)
        assert publisher.published == [(reference_rate(3_515_600), date(2025, 10, 7))]

    def test_aggregation_failure_not_published(self) -> None:
        publisher = PublisherDryRun()
        fetchers = agreeing_fetchers()
        fetchers["nyfed"].rate = None
        fetchers["ofr"].rate = None
        oracle = RateOracle(publisher, fetchers=fetchers, clock=FakeClock())
        outcome = asyncio.run(oracle.run_once())

        assert isinstance(outcome, Failure)
        assert outcome.kind is FailureKind.INSUFFICIENT_SOURCES
        assert publisher.published == []

    def test_publish_rejected(self) -> None:
        publisher = ScriptedPublisher([PublishStatus.REJECTED])
        oracle = RateOracle(publisher, fetchers=agreeing_fetchers(), clock=FakeClock())
        outcome = asyncio.run(oracle.run_once())

        assert isinstance(outcome, Failure)
        assert outcome.kind is FailureKind.PUBLISH_REJECTED

    def test_run_timeout(self) -> None:
        """A run exceeding run_timeout is a failure."""
        publisher = ScriptedPublisher([PublishStatus.SUCCESS], delay=5.0)
        oracle = RateOracle(
            publisher, fetchers=agreeing_fetchers(), run_timeout=0.05, clock=FakeClock()
        )
        outcome = asyncio.run(oracle.run_once())

        assert isinstance(outcome, Failure)
        assert "timed out" in outcome.message
        assert publisher.published == []


class TestRateOracleDaemon:
    """Test the daily loop with an injected clock."""

    def test_stop_while_sleeping(self) -> None:
        """Stopping during the first sleep exits cleanly after the diagnostic."""
        clock = FakeClock()
        fetchers = agreeing_fetchers()
        publisher = PublisherDryRun()
        waiter = FakeWaiter(clock, wakeups=0)
        oracle = RateOracle(publisher, fetchers=fetchers, clock=clock, waiter=waiter)

        state = asyncio.run(oracle.run_forever())

        assert state.total_runs == 0
        assert state.next_trigger == datetime(2025, 10, 7, 22, tzinfo=timezone.utc)
        # Diagnostic pass collected but did not publish
        assert fetchers["fred"].queries == [date(2025, 10, 7)]
        assert publisher.published == []
        # 15:32:50 -> 22:00:00
        assert waiter.delays == [6 * 3600 + 27 * 60 + 10]
        assert oracle.state is DaemonState.IDLE

    def test_daily_runs(self) -> None:
        """Each run fires at 22:00 UTC on consecutive days."""
        clock = FakeClock()
        publisher = PublisherDryRun()
        fetchers = agreeing_fetchers()
        oracle = RateOracle(
            publisher, fetchers=fetchers, clock=clock, waiter=FakeWaiter(clock, wakeups=3)
        )

        state = asyncio.run(oracle.run_forever())

        assert state.total_runs == 3
        assert state.consecutive_failures == 0
        assert [as_of for _, as_of in publisher.published] == [
            date(2025, 10, 7),
            date(2025, 10, 8),
            date(2025, 10, 9),
        ]
        assert state.next_trigger == datetime(2025, 10, 10, 22, tzinfo=timezone.utc)

    def test_persistent_failure(self) -> None:
        """Exceeding the threshold raises PersistentFailureError."""
        clock = FakeClock()
        oracle = RateOracle(
            PublisherDryRun(),
            fetchers=failing_fetchers(),
            max_consecutive_failures=2,
            clock=clock,
            waiter=FakeWaiter(clock, wakeups=10),
        )
        schedule = ScheduleState()

        with pytest.raises(PersistentFailureError) as exc_info:
            asyncio.run(oracle.run_forever(schedule=schedule))

        assert exc_info.value.consecutive_failures == 3
        assert exc_info.value.failure.kind is FailureKind.PERSISTENT_FAILURE
        assert exc_info.value.failure.exit_code == 17
        assert exc_info.value.last_failure.kind is FailureKind.INSUFFICIENT_SOURCES
        assert schedule.total_runs == 3
        assert oracle.state is DaemonState.FATAL

    def test_success_resets_failure_counter(self) -> None:
        """Failures separated by a success never accumulate to the threshold."""
        clock = FakeClock()
        publisher = ScriptedPublisher(
            [
                PublishStatus.REJECTED,
                PublishStatus.NETWORK_FAILURE,
                PublishStatus.SUCCESS,
                PublishStatus.REJECTED,
                PublishStatus.REJECTED,
            ]
        )
        oracle = RateOracle(
            publisher,
            fetchers=agreeing_fetchers(),
            max_consecutive_failures=2,
            clock=clock,
            waiter=FakeWaiter(clock, wakeups=5),
        )

        state = asyncio.run(oracle.run_forever())

        assert state.total_runs == 5
        assert state.total_failures == 4
        assert state.consecutive_failures == 2
        assert state.last_failure.kind is FailureKind.PUBLISH_REJECTED

    def test_diagnostic_failure_does_not_stop_daemon(self) -> None:
        clock = FakeClock()
        oracle = RateOracle(
            PublisherDryRun(),
            fetchers=failing_fetchers(),
            clock=clock,
            waiter=FakeWaiter(clock, wakeups=0),
        )
        state = asyncio.run(oracle.run_forever())
        assert state.total_runs == 0

    def test_diagnostic_bounded_by_run_timeout(self) -> None:
        """A hanging source cannot stall the startup pass past run_timeout."""
        fetchers = agreeing_fetchers()
        fetchers["ofr"].delay = 5.0
        oracle = RateOracle(
            PublisherDryRun(), fetchers=fetchers, run_timeout=0.05, clock=FakeClock()
        )

        outcome = asyncio.run(oracle.diagnose())

        assert isinstance(outcome, Failure)
        assert outcome.kind is FailureKind.SOURCE_UNAVAILABLE
        assert "diagnostic timed out" in outcome.message

    def test_stop_event_already_set(self) -> None:
        clock = FakeClock()
        oracle = RateOracle(
            PublisherDryRun(),
            fetchers=agreeing_fetchers(),
            clock=clock,
            waiter=FakeWaiter(clock, wakeups=5),
        )

        async def run() -> ScheduleState:
            stop_event = asyncio.Event()
            stop_event.set()
            return await oracle.run_forever(stop_event)

        state = asyncio.run(run())
        assert state.total_runs == 0
        assert state.next_trigger is None


def flat_overnight(rate: int) -> dict[date, int]:
    start = date(2025, 8, 20)
    return {start + timedelta(days=i): rate for i in range(50)}


class TestRateOracleVerify:
    """Test cross-checking published averages."""

    def test_verify(self) -> None:
        overnight = flat_overnight(4_000_000)
        expected = compute_compounded_average(date(2025, 10, 7), overnight)
        fetchers = {
            "fred": FakeFetcher("fred", 4_006_000, overnight=overnight),
            "nyfed": FakeFetcher("nyfed", 4_006_000),
            "ofr": FakeFetcher("ofr", 4_006_000),
        }
        oracle = RateOracle(PublisherDryRun(), fetchers=fetchers, clock=FakeClock())

        results = asyncio.run(oracle.verify())

        assert set(results) == {"fred", "nyfed"}
        fred = results["fred"]
        assert isinstance(fred, VerificationResult)
        assert fred.effective_date == date(2025, 10, 7)
        assert fred.computed_scaled == expected
        assert fred.difference == expected - 4_006_000
        assert isinstance(results["nyfed"], Failure)
        assert "no overnight series" in results["nyfed"].message
