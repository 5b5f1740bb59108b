"""CompoundingCalculator: 30-day compounded SOFR average from overnight rates.

Follows the NY Fed SOFR Averages methodology:

    average = (prod(1 + SOFR_i * n_i / 360) - 1) * 360 / d_c

where ``SOFR_i`` is the overnight rate of business day ``i`` (as a fraction),
``n_i`` the number of calendar days it applies for (3 on most Fridays) and
``d_c`` the 30 calendar days in the period.

An average published on date D covers the calendar days ``[D - 30, D - 1]``.
The first day uses the most recent rate on or before ``D - 30`` so that a
period starting on a weekend still has a rate in force.

.. code-block:: python

    >>> rates = {date(2025, 9, 1) + timedelta(days=i): 4_000_000 for i in range(45)}
    >>> avg = compute_compounded_average(date(2025, 10, 3), rates)
    >>> 4_000_000 < avg < 4_010_000
    True
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, timedelta
from decimal import ROUND_FLOOR, Decimal, localcontext

from .scaling import SCALE

# Calendar days in the averaging period.
PERIOD_DAYS = 30

# Day-count convention denominator (ACT/360).
DAY_COUNT_BASIS = 360

# Fewest dated overnight rates accepted inside the period. A 30-day window
# holds 20-22 business days; fewer than this means the feed has gaps.
MIN_BUSINESS_DAYS = 15


class InsufficientCoverageError(ValueError):
    """Raised when the overnight series cannot support a 30-day average."""

    pass


def _accrual_periods(
    start: date, end: date, rates: Mapping[date, int]
) -> list[tuple[int, int]]:
    """Group the period into (rate, n_i) runs.

    :param start: First calendar day of the period.
    :param end: Last calendar day of the period (inclusive).
    :param rates: Overnight rates keyed by business day.
    :returns: List of (scaled rate, calendar days it applies) tuples.
    :raises InsufficientCoverageError: If no rate is in force on ``start``.
    """
    prior = [d for d in rates if d <= start]
    if not prior:
        raise InsufficientCoverageError(f"insufficient history before {start}")

    current_rate = rates[max(prior)]
    current_start = start
    periods: list[tuple[int, int]] = []

    day = start
    while day <= end:
        if day in rates:
            n_i = (day - current_start).days
            if n_i > 0:
                periods.append((current_rate, n_i))
            current_rate = rates[day]
            current_start = day
        day += timedelta(days=1)

    periods.append((current_rate, (end - current_start).days + 1))
    return periods


def compute_compounded_average(
    effective_date: date,
    overnight_rates: Mapping[date, int],
    *,
    min_business_days: int = MIN_BUSINESS_DAYS,
) -> int:
    """Compute the 30-day compounded average published on ``effective_date``.

    :param effective_date: Publication date of the average.
    :param overnight_rates: Overnight rates (scaled units) keyed by business day.
        Dates after ``effective_date`` are ignored.
    :param min_business_days: Minimum dated rates required inside the period.
    :returns: Compounded average in scaled units, floored.
    :raises InsufficientCoverageError: If there are no rates, no history
        before the period or too few business days inside it.
    """
    if not overnight_rates:
        raise InsufficientCoverageError("no overnight rates provided")

    rates = {d: r for d, r in overnight_rates.items() if d <= effective_date}
    if not rates:
        raise InsufficientCoverageError(
            f"no overnight rates on or before {effective_date}"
        )

    end = effective_date - timedelta(days=1)
    start = effective_date - timedelta(days=PERIOD_DAYS)

    covered = sum(1 for d in rates if start <= d <= end)
    if covered < min_business_days:
        raise InsufficientCoverageError(
            f"only {covered} overnight rates in [{start}, {end}], "
            f"need at least {min_business_days}"
        )

    periods = _accrual_periods(start, end, rates)

    with localcontext() as ctx:
        ctx.prec = 50
        one = Decimal(1)
        basis = Decimal(DAY_COUNT_BASIS)
        per_unit = Decimal(100 * SCALE)

        factor = one
        for rate, n_i in periods:
            factor *= one + (Decimal(rate) / per_unit) * Decimal(n_i) / basis

        average = (factor - one) * basis / Decimal(PERIOD_DAYS)
        scaled = (average * per_unit).to_integral_value(rounding=ROUND_FLOOR)

    return int(scaled)
