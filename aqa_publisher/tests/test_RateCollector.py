"""Unit tests for RateCollector."""

import asyncio
from datetime import date

from aqa_publisher.src.Failure import Failure, FailureKind
from aqa_publisher.src.fetchers import BaseFetcher, FetcherError
from aqa_publisher.src.RateCollector import RateCollector
from aqa_publisher.src.RateObservation import RateObservation

QUERY = date(2025, 10, 7)


class StaticFetcher(BaseFetcher):
    """Returns a fixed rate after an optional delay."""

    name = "static"

    def __init__(self, source: str, rate: int, delay: float = 0.0) -> None:
        super().__init__()
        self.source = source
        self.rate = rate
        self.delay = delay

    async def collect(self, query_date: date) -> RateObservation:
        await asyncio.sleep(self.delay)
        return RateObservation(self.source, query_date, self.rate)


class BrokenFetcher(BaseFetcher):
    """Always fails inside collect()."""

    name = "broken"

    async def collect(self, query_date: date) -> RateObservation:
        raise FetcherError("provider down")


class BuggyFetcher(BaseFetcher):
    """Raises past the fetch() boundary."""

    name = "buggy"

    async def collect(self, query_date: date) -> RateObservation:
        raise NotImplementedError

    async def fetch(self, query_date: date) -> RateObservation | Failure:
        raise RuntimeError("unexpected")


class TestRateCollector:
    """Test concurrent collection."""

    def test_all_succeed(self) -> None:
        collector = RateCollector(
            {
                "fred": StaticFetcher("fred", 3_515_000),
                "nyfed": StaticFetcher("nyfed", 3_515_600),
                "ofr": StaticFetcher("ofr", 3_520_000),
            }
        )
        results = asyncio.run(collector.collect(QUERY))

        assert list(results) == ["fred", "nyfed", "ofr"]
        assert all(isinstance(r, RateObservation) for r in results.values())
        assert results["nyfed"].rate_scaled == 3_515_600

    def test_empty(self) -> None:
        assert asyncio.run(RateCollector({}).collect(QUERY)) == {}

    def test_timeout_becomes_failure(self) -> None:
        """A hanging source is cut off without holding up the others."""
        collector = RateCollector(
            {
                "fast": StaticFetcher("fast", 3_500_000),
                "slow": StaticFetcher("slow", 3_500_000, delay=5.0),
            },
            fetch_timeout=0.05,
        )
        results = asyncio.run(collector.collect(QUERY))

        assert isinstance(results["fast"], RateObservation)
        assert isinstance(results["slow"], Failure)
        assert results["slow"].kind is FailureKind.SOURCE_UNAVAILABLE
        assert "timed out" in results["slow"].message

    def test_fetcher_error_becomes_failure(self) -> None:
        collector = RateCollector({"broken": BrokenFetcher()})
        results = asyncio.run(collector.collect(QUERY))

        assert isinstance(results["broken"], Failure)
        assert "provider down" in results["broken"].message

    def test_unexpected_exception_contained(self) -> None:
        """A fetcher bug must not take down the whole collection."""
        collector = RateCollector(
            {"buggy": BuggyFetcher(), "ok": StaticFetcher("ok", 3_500_000)}
        )
        results = asyncio.run(collector.collect(QUERY))

        assert isinstance(results["buggy"], Failure)
        assert results["buggy"].context["error"] == "RuntimeError"
        assert isinstance(results["ok"], RateObservation)

    def test_fetches_run_concurrently(self) -> None:
        """Three 0.2s fetches should finish well within a 0.5s timeout."""
        collector = RateCollector(
            {s: StaticFetcher(s, 3_500_000, delay=0.2) for s in ("a", "b", "c")},
            fetch_timeout=0.5,
        )

        async def timed() -> float:
            loop = asyncio.get_running_loop()
            start = loop.time()
            await collector.collect(QUERY)
            return loop.time() - start

        assert asyncio.run(timed()) < 0.5
