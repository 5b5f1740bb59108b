"""St. Louis FRED fetcher.

Endpoint: https://fred.stlouisfed.org/graph/fredgraph.csv?id=SOFR30DAYAVG
Format: CSV (observation_date, SOFR30DAYAVG); "." marks unpublished days
API Key: Not required
"""

import logging
from datetime import date

from ..RateObservation import RateObservation
from ..scaling import window
from .base import (
    DEFAULT_LOOKBACK_DAYS,
    OVERNIGHT_LOOKBACK_DAYS,
    BaseFetcher,
    register_fetcher,
)
from .csv_rows import latest_rate, parse_rate_rows

logger = logging.getLogger(__name__)


@register_fetcher
class FredFetcher(BaseFetcher):
    """Fetcher for the public fredgraph.csv endpoint.

    Publishes the NY Fed 30-day average SOFR (SOFR30DAYAVG) and the
    overnight series (SOFR).
    """

    name = "fred"
    display_name = "St. Louis FRED"
    BASE_URL = "https://fred.stlouisfed.org/graph/fredgraph.csv"
    AVERAGE_SERIES = "SOFR30DAYAVG"
    OVERNIGHT_SERIES = "SOFR"

    async def _series(self, series: str, query_date: date, days: int) -> dict[date, int]:
        start, end = window(query_date, days)
        response = await self._get(
            self.BASE_URL,
            params={"id": series, "cosd": start.isoformat(), "coed": end.isoformat()},
        )
        return parse_rate_rows(response.text, "observation_date", series)

    async def collect(self, query_date: date) -> RateObservation:
        """Fetch the latest 30-day average on or before ``query_date``.

        :param query_date: Target day.
        :returns: Observation for the most recent published day.
        """
        rows = await self._series(self.AVERAGE_SERIES, query_date, DEFAULT_LOOKBACK_DAYS)
        observation_date, rate = latest_rate(rows)
        return self.observation(observation_date, rate)

    async def fetch_overnight_rates(self, query_date: date) -> dict[date, int]:
        """Fetch overnight SOFR over a 45-day window, for cross-checking averages.

        :param query_date: Last day of the window.
        :returns: Scaled overnight rates keyed by business day.
        """
        return await self._series(self.OVERNIGHT_SERIES, query_date, OVERNIGHT_LOOKBACK_DAYS)
