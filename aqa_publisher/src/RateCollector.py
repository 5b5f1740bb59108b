"""RateCollector: Concurrent fetching from all rate sources.

Launches every fetcher at once, bounds each by ``fetch_timeout`` and returns
only after all of them have answered or timed out, so aggregation always sees
a complete, fixed-size result set.

Architecture:
    - One task per source, gathered concurrently
    - A timed-out or misbehaving source becomes a SOURCE_UNAVAILABLE Failure
    - Aggregation runs strictly after the gather barrier
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import TYPE_CHECKING

from .Failure import Failure, FailureKind
from .RateObservation import RateObservation

if TYPE_CHECKING:
    from .fetchers import BaseFetcher

logger = logging.getLogger(__name__)


class RateCollector:
    """Fans out one fetch per source and joins on a bounded timeout.

    :ivar fetchers: Dict mapping source names to fetcher instances.
    :ivar fetch_timeout: Timeout for each source in seconds.
    """

    def __init__(
        self,
        fetchers: dict[str, BaseFetcher],
        fetch_timeout: float = 30.0,
    ) -> None:
        """Initialize the collector.

        :param fetchers: Dict mapping source names to fetcher instances.
        :param fetch_timeout: Timeout for each source fetch (default: 30.0).
        """
        self.fetchers = fetchers
        self.fetch_timeout = fetch_timeout

    async def collect(self, query_date: date) -> dict[str, RateObservation | Failure]:
        """Fetch every source's rate for ``query_date`` concurrently.

        :param query_date: Day the rate is wanted for.
        :returns: Dict mapping source name to its observation or failure.
        """
        if not self.fetchers:
            return {}

        tasks = [
            self._fetch_source(source, fetcher, query_date)
            for source, fetcher in self.fetchers.items()
        ]
        outcomes = await asyncio.gather(*tasks)

        results = dict(zip(self.fetchers.keys(), outcomes, strict=True))
        succeeded = [s for s, r in results.items() if isinstance(r, RateObservation)]
        logger.info(
            f"Collected {len(succeeded)}/{len(results)} sources for {query_date}"
            + (f" (ok: {', '.join(succeeded)})" if succeeded else "")
        )
        return results

    async def _fetch_source(
        self,
        source: str,
        fetcher: BaseFetcher,
        query_date: date,
    ) -> RateObservation | Failure:
        """Fetch a single source with timeout.

        :param source: Source name.
        :param fetcher: Fetcher instance to use.
        :param query_date: Day the rate is wanted for.
        :returns: Observation, or Failure on timeout or unexpected error.
        """
        try:
            return await asyncio.wait_for(
                fetcher.fetch(query_date),
                timeout=self.fetch_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[{source}] Timeout fetching rate for {query_date}")
            return Failure(
                FailureKind.SOURCE_UNAVAILABLE,
                f"{source}: timed out after {self.fetch_timeout}s",
                {"source": source, "timeout": self.fetch_timeout},
            )
        except Exception as e:
            # fetch() maps known errors itself; anything else is a fetcher bug
            logger.warning(f"[{source}] Error fetching rate for {query_date}: {e}")
            return Failure(
                FailureKind.SOURCE_UNAVAILABLE,
                f"{source}: {e}",
                {"source": source, "error": type(e).__name__},
            )
