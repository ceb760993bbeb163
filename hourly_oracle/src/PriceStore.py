"""HourlyPriceStore: persistent key space of PricePoints.

Points are keyed by (pair, bucket_time). The only guarantee the engines rely
on is that a get for a previously put key returns that exact value; any cache
placed in front of the persistent tier is transparent.

Implementations:
    - InMemoryPriceStore: dict backed, for tests and ephemeral runs
    - CachedPriceStore: short-TTL read cache in front of another store
    - DuckDBPriceStore (see DuckDBPriceStore.py): persistent tier
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime

from .HourBucket import Instant, normalize
from .price_cache import PriceCache
from .PricePoint import PricePoint
from .TradingPair import TradingPair, normalize_pair

logger = logging.getLogger(__name__)


class HourlyPriceStore(ABC):
    """Abstract store of hourly PricePoints.

    All bucket arguments are normalized to the start of their hour.
    """

    @abstractmethod
    async def get(self, pair: str | TradingPair, bucket_time: Instant) -> PricePoint | None:
        """Get the point for (pair, bucket), or None if absent.

        :raises StoreUnavailable: On persistence failure.
        """
        pass

    @abstractmethod
    async def put(self, point: PricePoint) -> None:
        """Insert or replace the point under its (pair, bucket) key.

        :raises StoreUnavailable: On persistence failure.
        """
        pass

    @abstractmethod
    async def range_scan(
        self, pair: str | TradingPair, start_bucket: Instant, end_bucket: Instant
    ) -> list[PricePoint]:
        """Get all points for pair with start <= bucket <= end, ascending.

        :raises StoreUnavailable: On persistence failure.
        """
        pass

    @abstractmethod
    async def delete_older_than(self, cutoff_bucket: Instant) -> int:
        """Delete all points with bucket strictly before the cutoff.

        :returns: Number of deleted points.
        :raises StoreUnavailable: On persistence failure.
        """
        pass

    async def close(self) -> None:
        """Release resources held by the store."""
        pass


class InMemoryPriceStore(HourlyPriceStore):
    """Dict backed store. Safe for concurrent use from one event loop."""

    def __init__(self) -> None:
        self._points: dict[tuple[str, datetime], PricePoint] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._points)

    async def get(self, pair: str | TradingPair, bucket_time: Instant) -> PricePoint | None:
        return self._points.get((normalize_pair(pair).symbol, normalize(bucket_time)))

    async def put(self, point: PricePoint) -> None:
        async with self._lock:
            self._points[point.key] = point

    async def range_scan(
        self, pair: str | TradingPair, start_bucket: Instant, end_bucket: Instant
    ) -> list[PricePoint]:
        symbol = normalize_pair(pair).symbol
        start = normalize(start_bucket)
        end = normalize(end_bucket)
        points = [
            p for (s, bucket), p in self._points.items()
            if s == symbol and start <= bucket <= end
        ]
        return sorted(points, key=lambda p: p.bucket_time)

    async def delete_older_than(self, cutoff_bucket: Instant) -> int:
        cutoff = normalize(cutoff_bucket)
        async with self._lock:
            stale = [key for key in self._points if key[1] < cutoff]
            for key in stale:
                del self._points[key]
        return len(stale)


class CachedPriceStore(HourlyPriceStore):
    """Read-through cache in front of another store.

    Point gets are served from a short-TTL in-memory cache; puts write through
    to the backing store and refresh the cache. Range scans always hit the
    backing store.

    :ivar backend: The persistent store.
    :ivar cache: TTL cache of points.
    """

    def __init__(self, backend: HourlyPriceStore, ttl_seconds: float = PriceCache.DEFAULT_TTL) -> None:
        self.backend = backend
        self.cache = PriceCache(ttl_seconds=ttl_seconds)

    async def get(self, pair: str | TradingPair, bucket_time: Instant) -> PricePoint | None:
        symbol = normalize_pair(pair).symbol
        bucket = normalize(bucket_time)
        cached = self.cache.get(symbol, bucket)
        if cached is not None:
            logger.debug(f"Cache hit for {symbol} at {bucket.isoformat()}")
            return cached

        point = await self.backend.get(symbol, bucket)
        if point is not None:
            self.cache.set(point)
        return point

    async def put(self, point: PricePoint) -> None:
        await self.backend.put(point)
        self.cache.set(point)

    async def range_scan(
        self, pair: str | TradingPair, start_bucket: Instant, end_bucket: Instant
    ) -> list[PricePoint]:
        return await self.backend.range_scan(pair, start_bucket, end_bucket)

    async def delete_older_than(self, cutoff_bucket: Instant) -> int:
        removed = await self.backend.delete_older_than(cutoff_bucket)
        self.cache.evict_older_than(normalize(cutoff_bucket))
        return removed

    async def close(self) -> None:
        self.cache.clear()
        await self.backend.close()
