"""
Rate fetchers for the three public SOFR average sources.

This module provides a unified interface for fetching the 30-day average
SOFR from FRED, the NY Fed and OFR (computed from overnight rates).

Usage:
    from aqa_publisher.src.fetchers import get_fetcher, get_available_fetchers

    # Get list of available fetchers
    available = get_available_fetchers()
    # ['fred', 'nyfed', 'ofr']

    # Create a fetcher instance
    fetcher = get_fetcher("fred")
    result = await fetcher.fetch(date.today())  # RateObservation | Failure
"""

# Import base classes and utilities
from .base import (
    FETCHER_REGISTRY,
    BaseFetcher,
    FetcherError,
    FetcherHTTPError,
    FetcherParseError,
    get_available_fetchers,
    get_fetcher,
    register_fetcher,
)

# Import all fetcher implementations to trigger registration
from .fred import FredFetcher
from .nyfed import NYFedFetcher
from .ofr import OFRFetcher

__all__ = [
    # Base classes
    "BaseFetcher",
    "FetcherError",
    "FetcherHTTPError",
    "FetcherParseError",
    # Registry functions
    "register_fetcher",
    "get_fetcher",
    "get_available_fetchers",
    "FETCHER_REGISTRY",
    # Fetcher implementations
    "FredFetcher",
    "NYFedFetcher",
    "OFRFetcher",
]
