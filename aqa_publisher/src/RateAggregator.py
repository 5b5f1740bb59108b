"""RateAggregator: Median aggregation with quorum, agreement, plausibility and staleness rules.

Algorithm:
    1. Partition adapter results into observations and failures
    2. Fail if fewer than min_sources observations succeeded
    3. Fail unless at least one pair of observations agrees within max_pair_diff
    4. Fail if any observation lies outside the plausible range
    5. Take the median rate (floored mean of the middle pair on even counts)
       and the median date (earlier of the middle pair on even counts)
    6. Fail if the median rate lies outside the plausible range
    7. Fail if the median date is more than max_staleness_days behind the query

A single compromised or lagging source cannot move the median unless it
finds an accomplice within 5 bps of itself, and three mutually divergent
sources never produce a result.

.. code-block:: python

    >>> aggregator = RateAggregator()
    >>> day = date(2025, 10, 7)
    >>> result = aggregator.aggregate(day, [
    ...     RateObservation("fred", day, 3_515_000),
    ...     RateObservation("nyfed", day, 3_515_600),
    ...     RateObservation("ofr", day, 3_520_000),
    ... ])
    >>> result.median_rate_scaled
    3515600
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from itertools import combinations

from .Failure import Failure, FailureKind
from .RateObservation import RateObservation

logger = logging.getLogger(__name__)

# 5 basis points in scaled units.
DEFAULT_MAX_PAIR_DIFF = 50_000

# Plausible range: -5% .. 15%.
DEFAULT_MIN_RATE = -5_000_000
DEFAULT_MAX_RATE = 15_000_000

DEFAULT_MAX_STALENESS_DAYS = 7
DEFAULT_MIN_SOURCES = 2


@dataclass(frozen=True)
class AggregationResult:
    """A validated median rate.

    Construction checks the invariants that ``RateAggregator`` enforces, so
    an out-of-range or under-supported result cannot exist.

    :ivar median_rate_scaled: Median of the contributing rates, scaled units.
    :ivar median_date: Median of the contributing observation dates.
    :ivar contributing_sources: Number of successful observations.
    :ivar agreeing_pairs: Number of observation pairs within tolerance.
    """

    median_rate_scaled: int
    median_date: date
    contributing_sources: int
    agreeing_pairs: int

    def __post_init__(self) -> None:
        if self.contributing_sources < DEFAULT_MIN_SOURCES:
            raise ValueError(
                f"need at least {DEFAULT_MIN_SOURCES} sources, "
                f"got {self.contributing_sources}"
            )
        if self.agreeing_pairs < 1:
            raise ValueError("need at least one agreeing pair of sources")
        if not DEFAULT_MIN_RATE <= self.median_rate_scaled <= DEFAULT_MAX_RATE:
            raise ValueError(
                f"median rate {self.median_rate_scaled} outside "
                f"[{DEFAULT_MIN_RATE}, {DEFAULT_MAX_RATE}]"
            )


def median_rate(values: Sequence[int]) -> int:
    """Median of scaled rates; even counts floor the mean of the middle pair."""
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) // 2


def median_date(dates: Sequence[date]) -> date:
    """Median date; even counts take the earlier of the middle pair."""
    ordered = sorted(dates)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return ordered[mid - 1]


class RateAggregator:
    """Validates and aggregates source observations into one median rate.

    :ivar min_sources: Minimum successful observations required.
    :ivar max_pair_diff: Max difference (scaled units) for a pair to agree.
    :ivar min_rate: Lowest plausible rate (scaled units).
    :ivar max_rate: Highest plausible rate (scaled units).
    :ivar max_staleness_days: Max days the median date may trail the query.
    """

    def __init__(
        self,
        min_sources: int = DEFAULT_MIN_SOURCES,
        max_pair_diff: int = DEFAULT_MAX_PAIR_DIFF,
        min_rate: int = DEFAULT_MIN_RATE,
        max_rate: int = DEFAULT_MAX_RATE,
        max_staleness_days: int = DEFAULT_MAX_STALENESS_DAYS,
    ) -> None:
        """Initialize the aggregator.

        Tolerances may only be tightened from the defaults; the defaults are
        the outer bounds an ``AggregationResult`` can represent.

        :param min_sources: Minimum number of successful sources (default 2).
        :param max_pair_diff: Agreement tolerance in scaled units (default 5 bps).
        :param min_rate: Lower plausibility bound (default -5%).
        :param max_rate: Upper plausibility bound (default 15%).
        :param max_staleness_days: Staleness limit in days (default 7).
        :raises ValueError: If parameters are invalid.
        """
        if min_sources < DEFAULT_MIN_SOURCES:
            raise ValueError(f"min_sources must be at least {DEFAULT_MIN_SOURCES}")
        if max_pair_diff < 0:
            raise ValueError("max_pair_diff must be non-negative")
        if min_rate > max_rate:
            raise ValueError("min_rate must not exceed max_rate")
        if min_rate < DEFAULT_MIN_RATE or max_rate > DEFAULT_MAX_RATE:
            raise ValueError(
                f"plausible range must lie within [{DEFAULT_MIN_RATE}, {DEFAULT_MAX_RATE}]"
            )
        if max_staleness_days < 0:
            raise ValueError("max_staleness_days must be non-negative")

        self.min_sources = min_sources
        self.max_pair_diff = max_pair_diff
        self.min_rate = min_rate
        self.max_rate = max_rate
        self.max_staleness_days = max_staleness_days

    def aggregate(
        self,
        query_date: date,
        results: Sequence[RateObservation | Failure],
    ) -> AggregationResult | Failure:
        """Aggregate adapter results into a validated median.

        :param query_date: Day the rate is being produced for.
        :param results: One entry per adapter: an observation or its failure.
        :returns: AggregationResult, or a Failure naming the rule that tripped.
        """
        # Step 1: Partition
        observations = [r for r in results if isinstance(r, RateObservation)]
        failed = [r for r in results if isinstance(r, Failure)]
        values = {o.source_id: o.rate_scaled for o in observations}

        # Step 2: Quorum
        if len(observations) < self.min_sources:
            return Failure(
                FailureKind.INSUFFICIENT_SOURCES,
                f"need at least {self.min_sources} sources to succeed, "
                f"got {len(observations)}",
                {
                    "available": len(observations),
                    "values": values,
                    "failed": [str(f) for f in failed],
                },
            )

        # Step 3: Pairwise agreement
        agreeing_pairs = sum(
            1
            for a, b in combinations(observations, 2)
            if abs(a.rate_scaled - b.rate_scaled) <= self.max_pair_diff
        )
        if agreeing_pairs == 0:
            return Failure(
                FailureKind.SOURCE_DISAGREEMENT,
                f"all pairs of sources differ by more than {self.max_pair_diff} "
                f"scaled units: "
                + ", ".join(f"{s}: {v}" for s, v in values.items()),
                {"values": values, "max_pair_diff": self.max_pair_diff},
            )

        # Step 4: Per-source plausibility
        for o in observations:
            if not self.min_rate <= o.rate_scaled <= self.max_rate:
                return Failure(
                    FailureKind.IMPLAUSIBLE_RATE,
                    f"rate from {o.source_id} ({o.rate_scaled}) outside plausible "
                    f"range [{self.min_rate}, {self.max_rate}]",
                    {
                        "source": o.source_id,
                        "rate_scaled": o.rate_scaled,
                        "values": values,
                        "min_rate": self.min_rate,
                        "max_rate": self.max_rate,
                    },
                )

        # Step 5: Median
        median_value = median_rate([o.rate_scaled for o in observations])
        median_day = median_date([o.observation_date for o in observations])

        # Step 6: Median plausibility
        if not self.min_rate <= median_value <= self.max_rate:
            return Failure(
                FailureKind.IMPLAUSIBLE_RATE,
                f"median rate {median_value} outside plausible range "
                f"[{self.min_rate}, {self.max_rate}]",
                {
                    "median_rate_scaled": median_value,
                    "values": values,
                    "min_rate": self.min_rate,
                    "max_rate": self.max_rate,
                },
            )

        # Step 7: Staleness
        days_behind = (query_date - median_day).days
        if days_behind > self.max_staleness_days:
            return Failure(
                FailureKind.STALE_DATA,
                f"data is too stale: median source date {median_day} is "
                f"{days_behind} days behind query date {query_date} "
                f"(max {self.max_staleness_days} days allowed)",
                {
                    "median_date": median_day.isoformat(),
                    "query_date": query_date.isoformat(),
                    "days_behind": days_behind,
                    "dates": {o.source_id: o.observation_date.isoformat() for o in observations},
                },
            )

        return AggregationResult(
            median_rate_scaled=median_value,
            median_date=median_day,
            contributing_sources=len(observations),
            agreeing_pairs=agreeing_pairs,
        )
