"""Office of Financial Research (OFR) fetcher.

Endpoint: https://data.financialresearch.gov/v1/series/timeseries
Mnemonic: FNYR-SOFR-A ("Secured Overnight Financing Rate")
Format: JSON array of [date, percent] pairs
API Key: Not required

OFR only publishes the overnight series, so the 30-day average is computed
locally with the NY Fed compounding methodology.
"""

import logging
import math
from datetime import date
from decimal import ROUND_HALF_EVEN, Decimal

from ..CompoundingCalculator import InsufficientCoverageError, compute_compounded_average
from ..RateObservation import RateObservation
from ..scaling import SCALE, parse_date, window
from .base import (
    OVERNIGHT_LOOKBACK_DAYS,
    BaseFetcher,
    FetcherParseError,
    register_fetcher,
)

logger = logging.getLogger(__name__)

# OFR reports overnight SOFR with two decimals; float noise beyond is dropped.
_TWO_PLACES = Decimal("0.01")


def parse_timeseries(payload: object) -> dict[date, int]:
    """Decode OFR ``[[date, percent], ...]`` into scaled rates keyed by date.

    :param payload: Decoded JSON body.
    :returns: Scaled overnight rates keyed by date.
    :raises FetcherParseError: On a malformed payload or an invalid value.
    """
    if not isinstance(payload, list):
        raise FetcherParseError(f"expected a JSON array, got {type(payload).__name__}")

    rates: dict[date, int] = {}
    for entry in payload:
        if not isinstance(entry, list) or len(entry) != 2:
            raise FetcherParseError(f"expected [date, value] pair, got {entry!r}")

        raw_date, raw_value = entry
        if isinstance(raw_value, bool) or not isinstance(raw_value, (int, float)):
            raise FetcherParseError(f"non-numeric value for {raw_date}: {raw_value!r}")
        if not math.isfinite(raw_value):
            raise FetcherParseError(f"non-finite value for {raw_date}")
        if raw_value < 0:
            raise FetcherParseError(f"negative percent for {raw_date}: {raw_value}")

        try:
            day = parse_date(str(raw_date))
        except ValueError as e:
            raise FetcherParseError(str(e)) from e

        percent = Decimal(repr(raw_value)).quantize(_TWO_PLACES, rounding=ROUND_HALF_EVEN)
        rates[day] = int(percent * SCALE)

    return rates


@register_fetcher
class OFRFetcher(BaseFetcher):
    """Fetcher for the OFR short-term funding monitor API.

    Computes the 30-day compounded average ending at the most recent date
    OFR has published, which usually lags the query date by a day or two.
    """

    name = "ofr"
    display_name = "OFR (computed)"
    BASE_URL = "https://data.financialresearch.gov/v1/series/timeseries"
    MNEMONIC = "FNYR-SOFR-A"

    async def fetch_overnight_rates(self, query_date: date) -> dict[date, int]:
        """Fetch overnight SOFR over a 45-day window.

        :param query_date: Last day of the window.
        :returns: Scaled overnight rates keyed by business day.
        """
        start, end = window(query_date, OVERNIGHT_LOOKBACK_DAYS)
        response = await self._get(
            self.BASE_URL,
            params={
                "mnemonic": self.MNEMONIC,
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
            },
        )
        return parse_timeseries(response.json())

    async def collect(self, query_date: date) -> RateObservation:
        """Compute the 30-day compounded average from OFR overnight rates.

        :param query_date: Target day.
        :returns: Observation dated at OFR's latest published day.
        :raises FetcherParseError: If the series is empty or too sparse.
        """
        rates = await self.fetch_overnight_rates(query_date)
        if not rates:
            raise FetcherParseError("OFR JSON data: no observations found")

        effective_date = max(rates)
        try:
            average = compute_compounded_average(effective_date, rates)
        except InsufficientCoverageError as e:
            raise FetcherParseError(f"OFR: {e}") from e

        return self.observation(effective_date, average)
