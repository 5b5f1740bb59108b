"""Failure: Typed outcome for anything that stops a rate from being published.

Adapters, the aggregation engine and the publisher all report problems as a
``Failure`` value rather than raising, so a single bad source or a rejected
vote never crashes the daemon. Only ``PersistentFailureError`` is raised, and
it is meant to terminate the process.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class FailureKind(str, Enum):
    """Failure taxonomy, one exit code per kind."""

    SOURCE_UNAVAILABLE = "source_unavailable"
    INSUFFICIENT_SOURCES = "insufficient_sources"
    SOURCE_DISAGREEMENT = "source_disagreement"
    IMPLAUSIBLE_RATE = "implausible_rate"
    STALE_DATA = "stale_data"
    PUBLISH_REJECTED = "publish_rejected"
    PUBLISH_NETWORK_FAILURE = "publish_network_failure"
    PERSISTENT_FAILURE = "persistent_failure"

    @property
    def exit_code(self) -> int:
        """Process exit code used by one-shot mode and fatal daemon exit."""
        return EXIT_CODES[self]


EXIT_OK = 0
EXIT_CONFIG_ERROR = 1

EXIT_CODES: dict[FailureKind, int] = {
    FailureKind.SOURCE_UNAVAILABLE: 10,
    FailureKind.INSUFFICIENT_SOURCES: 11,
    FailureKind.SOURCE_DISAGREEMENT: 12,
    FailureKind.IMPLAUSIBLE_RATE: 13,
    FailureKind.STALE_DATA: 14,
    FailureKind.PUBLISH_REJECTED: 15,
    FailureKind.PUBLISH_NETWORK_FAILURE: 16,
    FailureKind.PERSISTENT_FAILURE: 17,
}


@dataclass(frozen=True)
class Failure:
    """A typed failure with enough context to log and alert on.

    :ivar kind: Which rule or collaborator failed.
    :ivar message: Human-readable description.
    :ivar context: Observed values (rates, dates, source ids, limits).
    """

    kind: FailureKind
    message: str
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def exit_code(self) -> int:
        return self.kind.exit_code

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class PersistentFailureError(RuntimeError):
    """Raised by the daemon once consecutive failures exceed the threshold.

    :ivar consecutive_failures: Failure count at the time of giving up.
    :ivar last_failure: The failure that tipped the counter over.
    """

    def __init__(self, consecutive_failures: int, last_failure: Failure | None) -> None:
        self.consecutive_failures = consecutive_failures
        self.last_failure = last_failure
        self.failure = Failure(
            FailureKind.PERSISTENT_FAILURE,
            f"{consecutive_failures} consecutive failed runs",
            {
                "consecutive_failures": consecutive_failures,
                "last_failure": str(last_failure) if last_failure else None,
            },
        )
        super().__init__(str(self.failure))
