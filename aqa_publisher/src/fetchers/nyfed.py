"""NY Fed Markets Data fetcher.

Endpoint: https://markets.newyorkfed.org/api/rates/secured/sofrai/search.csv
Format: CSV with many columns; only "Effective Date" and
    "30-Day Average SOFR" are read. Rows arrive newest first.
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
class NYFedFetcher(BaseFetcher):
    """Fetcher for the NY Fed SOFR Averages (SOFRAI) search endpoint.

    The NY Fed is the administrator of SOFR and publishes the averages
    itself, so every row must carry a value.
    """

    name = "nyfed"
    display_name = "NY Fed"
    BASE_URL = "https://markets.newyorkfed.org/api/rates/secured"
    DATE_COLUMN = "Effective Date"
    AVERAGE_COLUMN = "30-Day Average SOFR"
    OVERNIGHT_COLUMN = "Rate (%)"

    async def collect(self, query_date: date) -> RateObservation:
        """Fetch the latest 30-day average on or before ``query_date``.

        :param query_date: Target day.
        :returns: Observation for the most recent published day.
        """
        start, end = window(query_date, DEFAULT_LOOKBACK_DAYS)
        response = await self._get(
            f"{self.BASE_URL}/sofrai/search.csv",
            params={
                "type": "rate",
                "startDate": start.isoformat(),
                "endDate": end.isoformat(),
            },
        )
        rows = parse_rate_rows(
            response.text, self.DATE_COLUMN, self.AVERAGE_COLUMN, allow_missing=False
        )
        observation_date, rate = latest_rate(rows)
        return self.observation(observation_date, rate)

    async def fetch_overnight_rates(self, query_date: date) -> dict[date, int]:
        """Fetch overnight SOFR over a 45-day window, for cross-checking averages.

        :param query_date: Last day of the window.
        :returns: Scaled overnight rates keyed by business day.
        """
        start, end = window(query_date, OVERNIGHT_LOOKBACK_DAYS)
        response = await self._get(
            f"{self.BASE_URL}/sofr/search.csv",
            params={"startDate": start.isoformat(), "endDate": end.isoformat()},
        )
        return parse_rate_rows(response.text, self.DATE_COLUMN, self.OVERNIGHT_COLUMN)
