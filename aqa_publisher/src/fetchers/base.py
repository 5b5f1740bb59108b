"""Base fetcher interface and shared HTTP client management.

All rate fetchers inherit from BaseFetcher and implement ``collect()``, which
returns a RateObservation or raises FetcherError. The public ``fetch()`` wraps
it so that no exception escapes an adapter: every network, HTTP, parse or
missing-data problem comes back as a ``Failure(SOURCE_UNAVAILABLE)``.

A shared httpx.AsyncClient is used across all fetchers to avoid connection
overhead.

.. code-block:: python

    @register_fetcher
    class MyFetcher(BaseFetcher):
        name = "myfetcher"
        display_name = "Example Provider"

        async def collect(self, query_date: date) -> RateObservation:
            response = await self._get(f"https://api.example.com/{query_date}")
            return self.observation(query_date, percent_to_scaled(response.text))
"""

import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import ClassVar

import httpx

from ..Failure import Failure, FailureKind
from ..RateObservation import RateObservation

logger = logging.getLogger(__name__)

# Lookback for providers that publish the 30-day average directly; wide
# enough to ride out weekends and long holiday runs.
DEFAULT_LOOKBACK_DAYS = 14

# Lookback for overnight series used to compound a 30-day average.
OVERNIGHT_LOOKBACK_DAYS = 45


class FetcherError(Exception):
    """Any problem fetching or decoding a provider's rate."""

    pass


class FetcherParseError(FetcherError):
    """Raised when a provider response cannot be decoded into a rate."""

    pass


class FetcherHTTPError(FetcherError):
    """Raised when a provider answers with a non-2xx status.

    :ivar status_code: HTTP status code from the failed request.
    """

    def __init__(self, status_code: int, message: str):
        """Initialize the HTTP error.

        :param status_code: HTTP status code.
        :param message: Error message from response.
        """
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


class BaseFetcher(ABC):
    """Abstract base class for rate fetchers.

    Subclasses must implement:
        - name: Class variable identifying the source (e.g., "fred", "ofr")
        - collect(): Async method returning a RateObservation for a query date

    :cvar name: Unique identifier for this fetcher.
    :cvar display_name: Provider name used in log lines.
    :cvar DEFAULT_TIMEOUT: Default HTTP request timeout in seconds.
    :ivar timeout: Request timeout in seconds.
    """

    # Class-level shared HTTP client
    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    # Fetcher identification
    name: ClassVar[str] = ""
    display_name: ClassVar[str] = ""

    # Default timeout for HTTP requests (seconds)
    DEFAULT_TIMEOUT = 30.0

    def __init__(self, timeout: float | None = None):
        """Initialize the fetcher.

        :param timeout: Request timeout in seconds (default: 30).
        """
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Get or create the shared HTTP client.

        All providers are fetched through one client so connections are pooled
        across daily runs.

        :returns: Shared httpx.AsyncClient instance.
        """
        if BaseFetcher._shared_client is None or BaseFetcher._shared_client.is_closed:
            BaseFetcher._shared_client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
                follow_redirects=True,
            )
        return BaseFetcher._shared_client

    @classmethod
    def set_shared_client(cls, client: httpx.AsyncClient | None) -> None:
        """Replace the shared HTTP client (used by tests to inject transports)."""
        BaseFetcher._shared_client = client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        client = BaseFetcher._shared_client
        if client is not None and not client.is_closed:
            await client.aclose()
        BaseFetcher._shared_client = None

    @abstractmethod
    async def collect(self, query_date: date) -> RateObservation:
        """Fetch and decode the provider's 30-day average for a target day.

        :param query_date: Day the rate is wanted for.
        :returns: Observation with the most recent value on or before the day.
        :raises FetcherError: On network, HTTP or decoding problems.
        """
        pass

    async def fetch(self, query_date: date) -> RateObservation | Failure:
        """Fetch the provider's rate, mapping every error to a Failure.

        :param query_date: Day the rate is wanted for.
        :returns: RateObservation on success, Failure(SOURCE_UNAVAILABLE) otherwise.
        """
        try:
            observation = await self.collect(query_date)
        except FetcherError as e:
            logger.warning(f"[{self.name}] Failed to fetch rate for {query_date}: {e}")
            return self._failure(query_date, e)
        except (KeyError, ValueError, TypeError, IndexError) as e:
            logger.warning(f"[{self.name}] Failed to parse response for {query_date}: {e}")
            return self._failure(query_date, e)

        logger.debug(f"[{self.name}] {observation}")
        return observation

    def observation(self, observation_date: date, rate_scaled: int) -> RateObservation:
        """Build a RateObservation tagged with this fetcher's name."""
        return RateObservation(
            source_id=self.name,
            observation_date=observation_date,
            rate_scaled=rate_scaled,
        )

    def _failure(self, query_date: date, error: Exception) -> Failure:
        return Failure(
            FailureKind.SOURCE_UNAVAILABLE,
            f"{self.display_name or self.name}: {error}",
            {
                "source": self.name,
                "query_date": query_date.isoformat(),
                "error": type(error).__name__,
            },
        )

    async def _get(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        """GET a provider endpoint through the shared client.

        :param url: Request URL.
        :param params: Optional query parameters.
        :param headers: Optional request headers.
        :returns: httpx.Response object.
        :raises FetcherHTTPError: On non-2xx response.
        :raises FetcherError: On network/timeout errors.
        """
        client = self.get_shared_client()
        try:
            response = await client.get(
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
            if not response.is_success:
                logger.debug(
                    "HTTP GET %s failed with status %s: %s",
                    url,
                    response.status_code,
                    response.text[:200],
                )
                raise FetcherHTTPError(response.status_code, response.text[:200])
            return response
        except httpx.TimeoutException as e:
            raise FetcherError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise FetcherError(f"Request failed: {e}") from e


# Source id -> fetcher class, filled in by @register_fetcher on import
FETCHER_REGISTRY: dict[str, type[BaseFetcher]] = {}


def register_fetcher(cls: type[BaseFetcher]) -> type[BaseFetcher]:
    """Decorator to register a fetcher class in the global registry.

    :param cls: Fetcher class to register.
    :returns: The registered class (unchanged).
    :raises ValueError: If fetcher has no name defined.

    .. code-block:: python

        @register_fetcher
        class FredFetcher(BaseFetcher):
            name = "fred"
            ...
    """
    if not cls.name:
        raise ValueError(f"Fetcher {cls.__name__} must define a 'name' class variable")
    FETCHER_REGISTRY[cls.name] = cls
    return cls


def get_fetcher(name: str, timeout: float | None = None) -> BaseFetcher:
    """Get a fetcher instance by name.

    :param name: Fetcher name (e.g., "fred", "nyfed", "ofr").
    :param timeout: Optional request timeout in seconds.
    :returns: Fetcher instance.
    :raises ValueError: If fetcher name is unknown.
    """
    if name not in FETCHER_REGISTRY:
        available = ", ".join(sorted(FETCHER_REGISTRY.keys()))
        raise ValueError(f"Unknown fetcher '{name}'. Available: {available}")
    return FETCHER_REGISTRY[name](timeout=timeout)


def get_available_fetchers() -> list[str]:
    """Get list of available fetcher names.

    :returns: Sorted list of registered fetcher names.
    """
    return sorted(FETCHER_REGISTRY.keys())
