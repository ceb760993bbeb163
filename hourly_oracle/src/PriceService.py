"""PriceService: the public read operations of the oracle.

    - get_price(): one hourly point, cache-aside (store first, compute on miss)
    - get_price_range(): hourly series, computing only missing buckets

Both accept an optional timeout that aborts in-flight source calls.

.. code-block:: python

    >>> service = PriceService(store, PriceAggregator(fetchers))
    >>> point = await service.get_price("BTC/USD", datetime(2024, 1, 1, 10, 42))
    >>> point.bucket_time.minute
    0
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from datetime import timedelta
from typing import TypeVar

from .HourBucket import Instant, normalize
from .PriceAggregator import PriceAggregator
from .PricePoint import PricePoint
from .PriceStore import HourlyPriceStore
from .RangeResolver import DEFAULT_MAX_SPAN, RangeResolver
from .TradingPair import TradingPair, normalize_pair

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PriceService:
    """Serves consensus prices from the store, computing them on a miss.

    :ivar store: Price store handle, owned by the caller.
    :ivar aggregator: Aggregation engine.
    :ivar resolver: Range resolution engine sharing store and aggregator.
    """

    def __init__(
        self,
        store: HourlyPriceStore,
        aggregator: PriceAggregator,
        max_range: timedelta = DEFAULT_MAX_SPAN,
        range_concurrency: int = 1,
    ) -> None:
        """Initialize the service.

        :param store: Price store.
        :param aggregator: Aggregation engine.
        :param max_range: Widest accepted range (default: 30 days).
        :param range_concurrency: Missing buckets computed in parallel.
        """
        self.store = store
        self.aggregator = aggregator
        self.resolver = RangeResolver(
            store, aggregator, max_span=max_range, concurrency=range_concurrency
        )

    async def get_price(
        self,
        pair: str | TradingPair,
        instant: Instant,
        *,
        timeout: float | None = None,
    ) -> PricePoint:
        """Get the consensus price of a pair for the hour of an instant.

        :param pair: Trading pair.
        :param instant: Any instant within the wanted hour.
        :param timeout: Optional overall timeout in seconds.
        :returns: Stored or freshly computed point.
        :raises NoPriceAvailable: If the point is not stored and no source answers.
        :raises StoreUnavailable: On persistence failure.
        :raises asyncio.TimeoutError: If the timeout expires.
        """
        return await self._with_timeout(self._get_price(pair, instant), timeout)

    async def _get_price(self, pair: str | TradingPair, instant: Instant) -> PricePoint:
        trading_pair = normalize_pair(pair)
        bucket = normalize(instant)

        cached = await self.store.get(trading_pair, bucket)
        if cached is not None:
            logger.info(f"Retrieved stored price for {trading_pair} at {bucket.isoformat()}")
            return cached

        result = await self.aggregator.aggregate(trading_pair, bucket)
        point = result.to_price_point()
        await self.store.put(point)
        logger.info(f"Stored new price for {trading_pair} at {bucket.isoformat()}: {point.value}")
        return point

    async def get_price_range(
        self,
        pair: str | TradingPair,
        start: Instant,
        end: Instant,
        *,
        timeout: float | None = None,
    ) -> list[PricePoint]:
        """Get every hourly point of a pair between start and end.

        :param pair: Trading pair.
        :param start: Range start.
        :param end: Range end.
        :param timeout: Optional overall timeout in seconds.
        :returns: Points in ascending bucket order.
        :raises InvalidRange: For inverted or too wide ranges.
        :raises NoPriceAvailable: If a missing bucket cannot be computed.
        :raises StoreUnavailable: On persistence failure.
        :raises asyncio.TimeoutError: If the timeout expires.
        """
        try:
            return await self._with_timeout(self.resolver.resolve(pair, start, end), timeout)
        except Exception as e:
            logger.error(f"Error getting price range {start} .. {end} for {pair}: {e}")
            raise

    @staticmethod
    async def _with_timeout(operation: Awaitable[T], timeout: float | None) -> T:
        if timeout is None:
            return await operation
        return await asyncio.wait_for(operation, timeout=timeout)
