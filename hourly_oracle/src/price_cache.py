"""Short-TTL in-memory cache of PricePoints.

Sits in front of the persistent store (see CachedPriceStore). Each store
owns its own cache instance; there is no process-wide cache.
"""

import logging
import time
from datetime import datetime

from .PricePoint import PricePoint

logger = logging.getLogger(__name__)


class PriceCache:
    """TTL cache of points keyed by (pair, bucket_time).

    :ivar ttl_seconds: Staleness threshold for an entry.
    """

    DEFAULT_TTL = 3600.0  # 60 minutes

    def __init__(self, ttl_seconds: float = DEFAULT_TTL) -> None:
        """Initialize the cache.

        :param ttl_seconds: Entry lifetime in seconds (0 disables caching).
        """
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must not be negative")
        self.ttl_seconds = ttl_seconds
        self._entries: dict[tuple[str, datetime], tuple[PricePoint, float]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def set(self, point: PricePoint) -> None:
        """Cache a point.

        :param point: Point to cache under its natural key.
        """
        if self.ttl_seconds == 0:
            return
        self._entries[point.key] = (point, time.time())

    def get(self, pair: str, bucket_time: datetime) -> PricePoint | None:
        """Get a cached point if fresh.

        :returns: The cached point, or None if absent or stale.
        """
        entry = self._entries.get((pair, bucket_time))
        if entry is None:
            return None
        point, stored_at = entry
        if time.time() - stored_at > self.ttl_seconds:
            logger.debug(f"Cached price for {pair} at {bucket_time.isoformat()} is stale")
            del self._entries[(pair, bucket_time)]
            return None
        return point

    def evict_older_than(self, cutoff: datetime) -> None:
        """Drop entries whose bucket is strictly before ``cutoff``."""
        for key in [k for k in self._entries if k[1] < cutoff]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()
