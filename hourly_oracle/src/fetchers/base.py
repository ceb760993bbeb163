"""Base fetcher interface and shared HTTP client management.

All price fetchers inherit from BaseFetcher and implement the fetch() method,
which returns the close price of the one-hour candle starting at a bucket.
A shared httpx.AsyncClient is used across all fetchers to avoid connection
overhead; tests inject their own client (e.g. one built on
``httpx.MockTransport``).

Failures are reported by raising one of the SourceFailure subclasses:

    - SourceUnavailable: connection error or non-2xx response
    - SourceTimeout: the request timed out
    - MalformedResponse: the body could not be parsed

.. code-block:: python

    @register_fetcher
    class MyFetcher(BaseFetcher):
        name = "myfetcher"

        async def fetch(self, pair: TradingPair, bucket_time: datetime) -> Decimal:
            data = await self._get_json(
                f"https://api.example.com/{pair.base}{pair.quote}/1h",
                params={"start": to_unix_seconds(bucket_time)},
            )
            return self._parse_price(data["close"], pair)
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar

import httpx

from ..errors import MalformedResponse, SourceTimeout, SourceUnavailable
from ..TradingPair import TradingPair
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


class BaseFetcher(ABC):
    """Abstract base class for hourly price fetchers.

    Subclasses must implement:
        - name: Class variable identifying the source (e.g., "bitstamp")
        - fetch(): Async method returning the hourly close for a bucket

    :cvar name: Unique identifier for this fetcher.
    :cvar DEFAULT_TIMEOUT: Default HTTP request timeout in seconds.
    :ivar timeout: Request timeout in seconds.
    :ivar retry_policy: Transport retry policy.
    """

    # Class-level shared HTTP client
    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    # Fetcher identification
    name: ClassVar[str] = ""

    # Default timeout for HTTP requests (seconds)
    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        timeout: float | None = None,
        retry_policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the fetcher.

        :param timeout: Request timeout in seconds (default: 10).
        :param retry_policy: Retry policy (default: 3 attempts, 2s base delay).
        :param client: Optional HTTP client; the shared client is used if None.
        """
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.retry_policy = retry_policy or RetryPolicy()
        self._client = client

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Get or create the shared HTTP client.

        The client is shared across all fetcher instances to reuse connections.

        :returns: Shared httpx.AsyncClient instance.
        """
        if BaseFetcher._shared_client is None or BaseFetcher._shared_client.is_closed:
            BaseFetcher._shared_client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
                follow_redirects=True,
            )
        return BaseFetcher._shared_client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        client = BaseFetcher._shared_client
        if client is not None and not client.is_closed:
            await client.aclose()
        BaseFetcher._shared_client = None

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client if self._client is not None else self.get_shared_client()

    @abstractmethod
    async def fetch(self, pair: TradingPair, bucket_time: datetime) -> Decimal:
        """Fetch the hourly close price for a pair.

        :param pair: Trading pair.
        :param bucket_time: Hour-aligned UTC start of the candle.
        :returns: Close price of the candle.
        :raises SourceFailure: If the price cannot be obtained.
        """
        pass

    def supports_pair(self, pair: TradingPair) -> bool:
        """Check if this fetcher supports the given trading pair.

        Override in subclasses to restrict supported pairs.

        :param pair: Trading pair.
        :returns: True if pair is supported.
        """
        return True

    async def _get(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        """Make an HTTP GET request with retries.

        :param url: Request URL.
        :param params: Optional query parameters.
        :param headers: Optional request headers.
        :returns: httpx.Response object.
        :raises SourceUnavailable: On non-2xx response or network errors.
        :raises SourceTimeout: On request timeout.
        """

        async def attempt() -> httpx.Response:
            return await self._get_once(url, params=params, headers=headers)

        return await self.retry_policy.run(attempt, label=f"[{self.name}] GET {url}")

    async def _get_once(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        try:
            response = await self.client.get(
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise SourceTimeout(self.name, f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise SourceUnavailable(self.name, f"Request failed: {e}") from e

        if not response.is_success:
            logger.debug(
                "HTTP GET %s failed with status %s: %s",
                url,
                response.status_code,
                response.text[:200],
            )
            raise SourceUnavailable(
                self.name, response.text[:200], status_code=response.status_code
            )
        return response

    async def _get_json(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> Any:
        """GET a URL and decode its JSON body, keeping numbers as Decimal.

        :raises MalformedResponse: If the body is not valid JSON.
        """
        response = await self._get(url, params=params, headers=headers)
        try:
            return response.json(parse_float=Decimal)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedResponse(self.name, f"Invalid JSON body: {e}") from e

    def _parse_price(self, raw: Any, pair: TradingPair) -> Decimal:
        """Convert a raw JSON price (string or number) to Decimal.

        :raises MalformedResponse: If the value is not a finite number.
        """
        if isinstance(raw, bool) or raw is None:
            raise MalformedResponse(self.name, f"Missing price for {pair}: {raw!r}")
        try:
            price = raw if isinstance(raw, Decimal) else Decimal(str(raw))
        except (InvalidOperation, ValueError) as e:
            raise MalformedResponse(self.name, f"Invalid price for {pair}: {raw!r}") from e
        if not price.is_finite():
            raise MalformedResponse(self.name, f"Invalid price for {pair}: {raw!r}")
        return price


# Registry of available fetchers (populated by subclass imports)
FETCHER_REGISTRY: dict[str, type[BaseFetcher]] = {}


def register_fetcher(cls: type[BaseFetcher]) -> type[BaseFetcher]:
    """Decorator to register a fetcher class in the global registry.

    :param cls: Fetcher class to register.
    :returns: The registered class (unchanged).
    :raises ValueError: If fetcher has no name defined.
    """
    if not cls.name:
        raise ValueError(f"Fetcher {cls.__name__} must define a 'name' class variable")
    FETCHER_REGISTRY[cls.name] = cls
    return cls


def get_fetcher(name: str, **kwargs: Any) -> BaseFetcher:
    """Get a fetcher instance by name.

    :param name: Fetcher name (e.g., "bitstamp", "kraken").
    :param kwargs: Passed to the fetcher constructor.
    :returns: Fetcher instance.
    :raises ValueError: If fetcher name is unknown.
    """
    if name not in FETCHER_REGISTRY:
        available = ", ".join(sorted(FETCHER_REGISTRY.keys()))
        raise ValueError(f"Unknown fetcher '{name}'. Available: {available}")
    return FETCHER_REGISTRY[name](**kwargs)


def get_available_fetchers() -> list[str]:
    """Get list of available fetcher names.

    :returns: Sorted list of registered fetcher names.
    """
    return sorted(FETCHER_REGISTRY.keys())
