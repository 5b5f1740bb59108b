"""Publisher: Abstract base class for submitting a validated rate."""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from .Failure import Failure, FailureKind


class PublishStatus(str, Enum):
    SUCCESS = "success"
    REJECTED = "rejected"
    NETWORK_FAILURE = "network_failure"


@dataclass
class PublishResult:
    """Outcome of one publish attempt across all signers.

    :ivar status: Overall status.
    :ivar message: Summary for logging.
    :ivar responses: Per-signer response payloads or error strings.
    """

    status: PublishStatus
    message: str = ""
    responses: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status is PublishStatus.SUCCESS

    def to_failure(self) -> Failure | None:
        """Map a non-success outcome to its Failure kind."""
        if self.status is PublishStatus.SUCCESS:
            return None
        kind = (
            FailureKind.PUBLISH_REJECTED
            if self.status is PublishStatus.REJECTED
            else FailureKind.PUBLISH_NETWORK_FAILURE
        )
        return Failure(kind, self.message, {"responses": self.responses})


class Publisher:
    """Abstract base class for publisher implementations.

    Receives a single ``(rate_scaled, as_of_date)`` pair and reports
    Success, Rejected or NetworkFailure.
    """

    @property
    @abstractmethod
    def description(self) -> str:
        """Short description for the startup banner."""
        pass

    @abstractmethod
    async def publish(self, rate_scaled: int, as_of: date) -> PublishResult:
        """Sign and submit a rate vote.

        :param rate_scaled: Rate in scaled units (1% == 1_000_000).
        :param as_of: Date of the data the rate was derived from.
        :returns: Outcome of the submission.
        """
        pass
