"""
AQA Publisher - Multi-Source SOFR Reference Rate Module

This module computes and publishes the AQA reference rate:
- RateObservation: One source's 30-day average SOFR for a day
- RateAggregator: Quorum, agreement, plausibility and staleness checks
- CompoundingCalculator: 30-day compounded average from overnight rates
- RateOracle: Main orchestrator for the daily publishing loop
- Publisher: Vote submission to the Hyperliquid exchange
- fetchers: Modular rate fetcher implementations
"""

from .Failure import Failure, FailureKind, PersistentFailureError
from .RateAggregator import AggregationResult, RateAggregator
from .RateObservation import RateObservation
from .RateOracle import DaemonState, RateOracle, ReferenceRate
from .ScheduleState import ScheduleState, next_trigger_after

__all__ = [
    "AggregationResult",
    "DaemonState",
    "Failure",
    "FailureKind",
    "PersistentFailureError",
    "RateAggregator",
    "RateObservation",
    "RateOracle",
    "ReferenceRate",
    "ScheduleState",
    "next_trigger_after",
]
