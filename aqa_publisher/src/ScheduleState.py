"""ScheduleState: Next trigger instant and failure counters for the daemon.

Lives for the lifetime of the process only; a restart recomputes the next
trigger from wall-clock time.

.. code-block:: python

    >>> now = datetime(2025, 10, 7, 15, 32, 50, tzinfo=timezone.utc)
    >>> next_trigger_after(now)
    datetime.datetime(2025, 10, 7, 22, 0, tzinfo=datetime.timezone.utc)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from .Failure import Failure

# Daily execution time: 22:00:00 UTC.
DEFAULT_EXECUTION_HOUR_UTC = 22


@dataclass
class ScheduleState:
    """Tracks when the daemon runs next and how runs have gone.

    :ivar next_trigger: UTC instant of the next scheduled run.
    :ivar consecutive_failures: Failed runs since the last success.
    :ivar total_runs: Scheduled runs executed since start.
    :ivar total_failures: Failed scheduled runs since start.
    :ivar last_failure: Most recent run failure.
    """

    next_trigger: datetime | None = None
    consecutive_failures: int = 0
    total_runs: int = 0
    total_failures: int = 0
    last_failure: Failure | None = None

    def record_success(self) -> None:
        """Record a successful run, resetting the consecutive counter."""
        self.total_runs += 1
        self.consecutive_failures = 0

    def record_failure(self, failure: Failure) -> int:
        """Record a failed run.

        :param failure: Why the run failed.
        :returns: Updated consecutive failure count.
        """
        self.total_runs += 1
        self.total_failures += 1
        self.consecutive_failures += 1
        self.last_failure = failure
        return self.consecutive_failures


def next_trigger_after(
    now: datetime, hour: int = DEFAULT_EXECUTION_HOUR_UTC
) -> datetime:
    """Next UTC ``hour:00:00`` strictly after ``now``.

    :param now: Current instant; naive values are taken as UTC.
    :param hour: Hour of day (UTC) to trigger at.
    :returns: Timezone-aware UTC datetime.
    :raises ValueError: If hour is outside 0-23.
    """
    if not 0 <= hour <= 23:
        raise ValueError(f"hour must be in 0..23, got {hour}")

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    else:
        now = now.astimezone(timezone.utc)

    trigger = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if trigger <= now:
        trigger += timedelta(days=1)
    return trigger


def format_duration(duration: timedelta) -> str:
    """Format a duration as ``"7h 27m 10s"``."""
    total_seconds = max(0, int(duration.total_seconds()))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours}h {minutes}m {seconds}s"
