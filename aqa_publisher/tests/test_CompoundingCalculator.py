"""Unit tests for the 30-day compounded average calculator."""

from datetime import date, timedelta

import pytest

from aqa_publisher.src.CompoundingCalculator import (
    InsufficientCoverageError,
    compute_compounded_average,
)

# Wednesday; the period is Mon 2025-09-15 .. Tue 2025-10-14.
EFFECTIVE = date(2025, 10, 15)
PERIOD_START = date(2025, 9, 15)
FRIDAY = date(2025, 9, 26)
MONDAY = date(2025, 9, 29)


def business_days(start: date, end: date) -> list[date]:
    days = []
    day = start
    while day <= end:
        if day.weekday() < 5:
            days.append(day)
        day += timedelta(days=1)
    return days


def weekday_rates(rate: int) -> dict[date, int]:
    return {d: rate for d in business_days(PERIOD_START, EFFECTIVE)}


class TestCompoundedAverage:
    """Test the compounding methodology."""

    def test_flat_rate_every_day(self) -> None:
        """A flat 4% compounds to slightly above 4%, within 1 bp."""
        rates = {date(2025, 9, 1) + timedelta(days=i): 4_000_000 for i in range(45)}
        avg = compute_compounded_average(date(2025, 10, 3), rates)
        assert 4_000_000 < avg < 4_010_000

    def test_flat_rate_business_days(self) -> None:
        """Weekend carry-over should keep a flat rate near itself."""
        avg = compute_compounded_average(EFFECTIVE, weekday_rates(4_000_000))
        assert 4_000_000 < avg < 4_010_000

    def test_zero_rates(self) -> None:
        """Zero overnight rates average to zero."""
        assert compute_compounded_average(EFFECTIVE, weekday_rates(0)) == 0

    def test_friday_rate_applies_for_three_days(self) -> None:
        """A Friday rate accrues over Saturday and Sunday as well."""
        rates = weekday_rates(0)
        rates[FRIDAY] = 3_600_000
        # 0.036 * 3/360 * 360/30 == 0.0036
        assert compute_compounded_average(EFFECTIVE, rates) == 360_000

    def test_monday_rate_applies_for_one_day(self) -> None:
        """A Monday rate accrues for a single day."""
        rates = weekday_rates(0)
        rates[MONDAY] = 3_600_000
        assert compute_compounded_average(EFFECTIVE, rates) == 120_000

    def test_rates_after_effective_date_ignored(self) -> None:
        """Observations published after the effective date must not leak in."""
        base = weekday_rates(4_000_000)
        polluted = dict(base)
        for i in range(1, 10):
            polluted[EFFECTIVE + timedelta(days=i)] = 14_000_000
        assert compute_compounded_average(EFFECTIVE, polluted) == (
            compute_compounded_average(EFFECTIVE, base)
        )

    def test_rate_on_effective_date_not_in_period(self) -> None:
        """The effective date itself lies outside the averaging period."""
        base = weekday_rates(4_000_000)
        changed = dict(base)
        changed[EFFECTIVE] = 14_000_000
        assert compute_compounded_average(EFFECTIVE, changed) == (
            compute_compounded_average(EFFECTIVE, base)
        )

    def test_weekend_start_uses_prior_rate(self) -> None:
        """A period starting on a weekend uses the preceding Friday's rate."""
        # Period for Mon 2025-10-20 starts on Sat 2025-09-20
        effective = date(2025, 10, 20)
        rates = {d: 4_000_000 for d in business_days(date(2025, 9, 10), effective)}
        avg = compute_compounded_average(effective, rates)
        assert 4_000_000 < avg < 4_010_000


class TestCoverage:
    """Test insufficient coverage handling."""

    def test_no_rates(self) -> None:
        with pytest.raises(InsufficientCoverageError, match="no overnight rates"):
            compute_compounded_average(EFFECTIVE, {})

    def test_only_future_rates(self) -> None:
        """Rates exclusively after the effective date are no rates at all."""
        rates = {EFFECTIVE + timedelta(days=1): 4_000_000}
        with pytest.raises(InsufficientCoverageError, match="on or before"):
            compute_compounded_average(EFFECTIVE, rates)

    def test_too_few_business_days(self) -> None:
        """Sparse series fail instead of producing a best-effort estimate."""
        days = business_days(PERIOD_START, EFFECTIVE)[:10]
        rates = {d: 4_000_000 for d in days}
        with pytest.raises(InsufficientCoverageError, match="only 10 overnight rates"):
            compute_compounded_average(EFFECTIVE, rates)

    def test_missing_history_before_start(self) -> None:
        """No rate in force on the first day of the period is a failure."""
        rates = {
            d: 4_000_000
            for d in business_days(PERIOD_START + timedelta(days=1), EFFECTIVE)
        }
        with pytest.raises(InsufficientCoverageError, match="insufficient history"):
            compute_compounded_average(EFFECTIVE, rates)

    def test_custom_minimum(self) -> None:
        """The minimum number of business days is configurable."""
        days = business_days(PERIOD_START, EFFECTIVE)[:10]
        rates = {d: 4_000_000 for d in days}
        avg = compute_compounded_average(EFFECTIVE, rates, min_business_days=5)
        assert 4_000_000 < avg < 4_010_000
