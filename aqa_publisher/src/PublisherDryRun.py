"""PublisherDryRun: Publisher for local runs that never touches the exchange."""

import logging
from datetime import date

from .Publisher import Publisher, PublishResult, PublishStatus
from .scaling import format_scaled_rate

logger = logging.getLogger(__name__)


class PublisherDryRun(Publisher):
    """Logs the vote that would be submitted and reports success.

    :ivar published: (rate_scaled, as_of) pairs seen so far.
    """

    def __init__(self) -> None:
        self.published: list[tuple[int, date]] = []

    @property
    def description(self) -> str:
        return "dry run (no submission)"

    async def publish(self, rate_scaled: int, as_of: date) -> PublishResult:
        """Record and log the rate.

        :param rate_scaled: Rate in scaled units.
        :param as_of: Date of the data behind the rate.
        :returns: Always a SUCCESS result.
        """
        self.published.append((rate_scaled, as_of))
        rate = format_scaled_rate(rate_scaled)
        logger.info(f"[dry-run] Would submit rate {rate} (data as of {as_of})")
        return PublishResult(status=PublishStatus.SUCCESS, message=f"dry run: {rate}")
