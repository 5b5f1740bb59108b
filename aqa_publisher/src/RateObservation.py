"""RateObservation: One provider's dated 30-day average, in scaled units.

.. code-block:: python

    >>> obs = RateObservation("fred", date(2025, 10, 7), 4_293_200)
    >>> obs.percent
    '4.293200%'
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from .scaling import SCALE


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RateObservation:
    """A single provider's rate for a target day.

    :ivar source_id: Registered fetcher name (e.g. "fred", "nyfed", "ofr").
    :ivar observation_date: Date the provider published the value for.
    :ivar rate_scaled: Rate in scaled units (1% == 1_000_000).
    :ivar as_of: UTC timestamp at which the observation was collected.
    """

    source_id: str
    observation_date: date
    rate_scaled: int
    as_of: datetime = field(default_factory=_utcnow)

    @property
    def percent(self) -> str:
        """Human-readable percent with six decimals, for logging."""
        sign = "-" if self.rate_scaled < 0 else ""
        whole, frac = divmod(abs(self.rate_scaled), SCALE)
        return f"{sign}{whole}.{frac:06d}%"

    def __str__(self) -> str:
        return f"{self.source_id}={self.percent}@{self.observation_date.isoformat()}"
