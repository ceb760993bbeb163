"""RangeResolver: hourly price series for a time range, computing only gaps.

For a request [start, end]:
    1. Normalize both ends; reject inverted ranges and spans over max_span
    2. Scan the store for points already computed in the range
    3. Build the required hourly buckets (see required_buckets())
    4. Compute each missing bucket through the aggregator and store it
    5. Return stored and computed points merged in ascending order

A bucket that cannot be computed aborts the request with NoPriceAvailable;
it is never silently dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from datetime import datetime, timedelta

from .errors import InvalidRange
from .HourBucket import ONE_HOUR, Instant, hour_steps, normalize, to_utc
from .PriceAggregator import PriceAggregator
from .PricePoint import PricePoint
from .PriceStore import HourlyPriceStore
from .TradingPair import TradingPair, normalize_pair

logger = logging.getLogger(__name__)

DEFAULT_MAX_SPAN = timedelta(days=30)


def required_buckets(
    start: datetime,
    end: datetime,
    existing: Mapping[datetime, PricePoint],
    span: timedelta | None = None,
) -> list[datetime]:
    """Hourly buckets a range request needs, ascending.

    The sequence always contains ``start`` followed by every hourly step
    strictly before ``end``. ``end`` itself is only included when the span is
    an exact number of hours and fewer than two points already exist.

    :param start: Normalized range start.
    :param end: Normalized range end.
    :param existing: Points already stored in the range, keyed by bucket.
    :param span: Requested (un-normalized) end - start; defaults to end - start.
    :returns: Required buckets in ascending order.
    """
    if span is None:
        span = end - start
    # start, then every hour up to end - 1h
    buckets = list(hour_steps(start, max((end - start) // ONE_HOUR, 1)))
    # TODO: confirm with product whether the "fewer than two stored"
    # condition on the final bucket is intended behaviour.
    if span % ONE_HOUR == timedelta(0) and len(existing) < 2:
        buckets.append(end)
    # start == end yields [start, end]; collapse the duplicate
    return sorted(set(buckets))


class RangeResolver:
    """Resolves hourly price ranges against a store and an aggregator.

    :ivar store: Store holding computed points.
    :ivar aggregator: Engine computing missing points.
    :ivar max_span: Widest accepted range.
    :ivar concurrency: Number of missing buckets computed at once.
    """

    def __init__(
        self,
        store: HourlyPriceStore,
        aggregator: PriceAggregator,
        max_span: timedelta = DEFAULT_MAX_SPAN,
        concurrency: int = 1,
    ) -> None:
        """Initialize the resolver.

        :param store: Price store.
        :param aggregator: Aggregation engine.
        :param max_span: Maximum allowed end - start (default: 30 days).
        :param concurrency: Missing buckets computed in parallel (default: 1).
        :raises ValueError: If concurrency < 1.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.store = store
        self.aggregator = aggregator
        self.max_span = max_span
        self.concurrency = concurrency

    def validate(self, start: Instant, end: Instant) -> tuple[datetime, datetime]:
        """Normalize and check a range.

        :returns: Normalized (start, end).
        :raises InvalidRange: If start > end or the span exceeds max_span.
        """
        start_bucket = normalize(start)
        end_bucket = normalize(end)
        # Compare raw instants: 10:45 .. 10:15 shares one bucket but is inverted
        span = to_utc(end) - to_utc(start)
        if span < timedelta(0):
            raise InvalidRange(start_bucket, end_bucket, "start is after end")
        if span > self.max_span:
            raise InvalidRange(
                start_bucket, end_bucket, f"range cannot exceed {self.max_span.days} days"
            )
        return start_bucket, end_bucket

    async def resolve(
        self, pair: str | TradingPair, start: Instant, end: Instant
    ) -> list[PricePoint]:
        """Get every hourly point of a pair in [start, end].

        :param pair: Trading pair.
        :param start: Range start (any instant).
        :param end: Range end (any instant).
        :returns: Points in ascending bucket order.
        :raises InvalidRange: For inverted or too wide ranges.
        :raises NoPriceAvailable: If a missing bucket cannot be computed.
        :raises StoreUnavailable: On persistence failure.
        """
        trading_pair = normalize_pair(pair)
        start_bucket, end_bucket = self.validate(start, end)

        stored = await self.store.range_scan(trading_pair, start_bucket, end_bucket)
        points: dict[datetime, PricePoint] = {p.bucket_time: p for p in stored}

        span = to_utc(end) - to_utc(start)
        required = required_buckets(start_bucket, end_bucket, points, span)
        missing = [bucket for bucket in required if bucket not in points]

        if missing:
            logger.info(
                f"Fetching {len(missing)} missing prices for {trading_pair} between "
                f"{start_bucket.isoformat()} and {end_bucket.isoformat()}"
            )
            for point in await self._compute(trading_pair, missing):
                points[point.bucket_time] = point

        return [points[bucket] for bucket in sorted(points)]

    async def _compute(self, pair: TradingPair, buckets: list[datetime]) -> list[PricePoint]:
        if self.concurrency == 1:
            return [await self._compute_one(pair, bucket) for bucket in buckets]

        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(bucket: datetime) -> PricePoint:
            async with semaphore:
                return await self._compute_one(pair, bucket)

        tasks = [asyncio.ensure_future(bounded(bucket)) for bucket in buckets]
        try:
            return list(await asyncio.gather(*tasks))
        finally:
            # First failure aborts the request; stop the remaining buckets
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _compute_one(self, pair: TradingPair, bucket: datetime) -> PricePoint:
        result = await self.aggregator.aggregate(pair, bucket)
        point = result.to_price_point()
        await self.store.put(point)
        logger.debug(f"Fetched and stored {pair} at {bucket.isoformat()}: {point.value}")
        return point
