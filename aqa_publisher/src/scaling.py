"""Fixed-point rate helpers.

Rates are carried as integers where one percentage point equals 1,000,000
units (so 100% == 100_000_000). Every conversion floors, which is the
payor-friendly direction for a rate that sets what depositors are paid.

.. code-block:: python

    >>> percent_to_scaled("4.2932")
    4293200
    >>> format_scaled_rate(4_500_000)
    '0.04500000'
    >>> adjust_basis(100_000_000)
    101458333
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from decimal import ROUND_FLOOR, Decimal, InvalidOperation

# Scaled units per percentage point.
SCALE = 1_000_000

# Scaled units per 1.0 (i.e. 100%).
UNIT = 100 * SCALE

# Digits after the decimal point in the submitted rate string.
SUBMISSION_DECIMALS = 8

# ACT/360 -> ACT/365.25 is 365.25 / 360 == 1461 / 1440 == 487 / 480.
BASIS_NUMERATOR = 487
BASIS_DENOMINATOR = 480

# Reference rate is 85% of the basis-adjusted SOFR average.
REFERENCE_SCALAR_NUMERATOR = 85
REFERENCE_SCALAR_DENOMINATOR = 100

_PLAIN_DECIMAL = re.compile(r"^\d*\.?\d*$")


def percent_to_scaled(text: str) -> int:
    """Convert a percent string (e.g. ``"4.2932"``) to scaled units, flooring.

    Only plain non-negative decimals are accepted; exponent notation and
    signs are rejected since no provider publishes them.

    :param text: Percent value as published by a provider.
    :returns: Scaled integer (1% == 1_000_000).
    :raises ValueError: If the value is empty, negative or malformed.
    """
    raw = text.strip()
    if not raw or raw == ".":
        raise ValueError("missing percent value")
    if raw.startswith("-"):
        raise ValueError(f"negative percent not allowed: {raw}")
    if not _PLAIN_DECIMAL.match(raw):
        raise ValueError(f"invalid percent value: {raw!r}")

    try:
        value = Decimal(raw)
    except InvalidOperation as e:
        raise ValueError(f"invalid percent value: {raw!r}") from e

    return int((value * SCALE).to_integral_value(rounding=ROUND_FLOOR))


def format_scaled_rate(scaled_rate: int) -> str:
    """Render a scaled rate as the decimal string submitted on-chain.

    4_500_000 (4.5%) becomes ``"0.04500000"``. Scaled units carry exactly
    eight fractional digits of the decimal fraction, so the integer split is
    exact and no rounding takes place.

    :param scaled_rate: Rate in scaled units.
    :returns: Decimal fraction with exactly 8 digits after the point.
    """
    sign = "-" if scaled_rate < 0 else ""
    whole, frac = divmod(abs(scaled_rate), UNIT)
    return f"{sign}{whole}.{frac:0{SUBMISSION_DECIMALS}d}"


def adjust_basis(scaled_rate: int) -> int:
    """Convert an ACT/360 rate to an ACT/365.25 annualized rate (floored)."""
    return (scaled_rate * BASIS_NUMERATOR) // BASIS_DENOMINATOR


def reference_rate(scaled_sofr_average: int) -> int:
    """Derive the published reference rate from a 30-day SOFR average.

    :param scaled_sofr_average: Median 30-day SOFR average in scaled units.
    :returns: Basis-adjusted rate times 85%, floored.
    """
    adjusted = adjust_basis(scaled_sofr_average)
    return (adjusted * REFERENCE_SCALAR_NUMERATOR) // REFERENCE_SCALAR_DENOMINATOR


def parse_date(text: str) -> date:
    """Parse ``YYYY-MM-DD`` or ``MM/DD/YYYY`` (zero padding optional).

    :param text: Date string, surrounding whitespace allowed.
    :returns: Parsed date.
    :raises ValueError: If the string is not a valid date in either format.
    """
    s = text.strip()
    for fmt in ("%Y-%m-%d", "%m/%d/%Y"):
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"invalid date format: {s!r}")


def window(end_date: date, days: int) -> tuple[date, date]:
    """Inclusive lookback window ``[end_date - days, end_date]``."""
    return end_date - timedelta(days=days), end_date
