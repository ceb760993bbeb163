"""PriceAggregator: consensus hourly price from several unreliable sources.

Algorithm:
    1. Normalize the requested instant to its hour bucket
    2. Fetch the bucket from every source concurrently, each with a timeout
    3. Log and exclude failed sources; log and exclude non-positive prices
    4. Raise NoPriceAvailable if nothing usable remains
    5. Combine the remaining prices with the configured strategy

The aggregator has no side effects beyond the outbound source calls;
persisting the result is the caller's job.

.. code-block:: python

    >>> aggregator = PriceAggregator([bitstamp, kraken], strategy=MedianStrategy())
    >>> result = await aggregator.aggregate("BTC/USD", datetime(2024, 1, 1, 10, 42))
    >>> result.bucket_time
    datetime.datetime(2024, 1, 1, 10, 0, tzinfo=datetime.timezone.utc)
    >>> result.contributing_source_count
    2
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from .CalculationStrategy import AverageStrategy, PriceCalculationStrategy
from .errors import (
    InvalidArgument,
    MalformedResponse,
    NoPriceAvailable,
    SourceFailure,
    SourceTimeout,
    SourceUnavailable,
)
from .HourBucket import Instant, normalize
from .PricePoint import PricePoint, RawQuote, quantize_price
from .TradingPair import TradingPair, normalize_pair

if TYPE_CHECKING:
    from .fetchers import BaseFetcher

logger = logging.getLogger(__name__)


@dataclass
class AggregationResult:
    """Result of a successful aggregation.

    :ivar pair: Canonical pair symbol.
    :ivar bucket_time: Hour bucket the price belongs to.
    :ivar value: Consensus price (not yet quantized).
    :ivar contributing_source_count: Number of prices that were combined.
    :ivar quotes: The raw quotes that were combined.
    :ivar failures: Source name to failure description for excluded sources.
    """

    pair: str
    bucket_time: datetime
    value: Decimal
    contributing_source_count: int
    quotes: list[RawQuote] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def sources(self) -> list[str]:
        """Names of the sources that contributed."""
        return [q.source for q in self.quotes]

    def to_price_point(self) -> PricePoint:
        """Convert to a persistable PricePoint (quantized to 8 digits)."""
        return PricePoint(pair=self.pair, bucket_time=self.bucket_time, value=self.value)


class PriceAggregator:
    """Aggregates hourly prices from multiple sources.

    :ivar sources: Registered fetchers, queried on every aggregation.
    :ivar strategy: Strategy combining the collected prices.
    :ivar fetch_timeout: Per-source timeout in seconds.
    """

    def __init__(
        self,
        sources: Sequence[BaseFetcher],
        strategy: PriceCalculationStrategy | None = None,
        fetch_timeout: float = 10.0,
    ) -> None:
        """Initialize the aggregator.

        :param sources: Fetchers to query.
        :param strategy: Calculation strategy (default: Average).
        :param fetch_timeout: Timeout for each source call in seconds.
        :raises ValueError: If no sources are given or timeout is not positive.
        """
        if not sources:
            raise ValueError("At least one price source is required")
        if fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be positive")

        self.sources = list(sources)
        self.strategy = strategy or AverageStrategy()
        self.fetch_timeout = fetch_timeout

    async def aggregate(
        self, pair: str | TradingPair, requested_instant: Instant
    ) -> AggregationResult:
        """Compute the consensus price of a pair for the hour of an instant.

        :param pair: Trading pair (e.g. "BTC/USD").
        :param requested_instant: Any instant within the wanted hour.
        :returns: AggregationResult for the hour bucket.
        :raises NoPriceAvailable: If no source produced a positive price.
        """
        trading_pair = normalize_pair(pair)
        bucket_time = normalize(requested_instant)

        outcomes = await asyncio.gather(
            *(self._fetch_one(source, trading_pair, bucket_time) for source in self.sources)
        )

        quotes: list[RawQuote] = []
        failures: dict[str, str] = {}
        for source, outcome in zip(self.sources, outcomes, strict=True):
            if isinstance(outcome, SourceFailure):
                failures[source.name] = str(outcome)
                continue
            # Anything that rounds to zero at stored precision is unusable
            if quantize_price(outcome.value) <= 0:
                logger.warning(
                    f"[{source.name}] Returned invalid price {outcome.value} "
                    f"for {trading_pair} at {bucket_time.isoformat()}, excluding"
                )
                continue
            logger.debug(f"[{source.name}] {trading_pair} @ {bucket_time.isoformat()}: {outcome.value}")
            quotes.append(outcome)

        if not quotes:
            logger.error(
                f"{trading_pair}: No price from any source at {bucket_time.isoformat()} "
                f"(failures={failures})"
            )
            raise NoPriceAvailable(trading_pair.symbol, bucket_time, failures)

        value = self.strategy.combine([q.value for q in quotes])
        breakdown = ", ".join(f"{q.source}={q.value}" for q in quotes)
        logger.info(
            f"{trading_pair} @ {bucket_time.isoformat()}: {value} "
            f"({self.strategy.name.value} of [{breakdown}])"
        )

        return AggregationResult(
            pair=trading_pair.symbol,
            bucket_time=bucket_time,
            value=value,
            contributing_source_count=len(quotes),
            quotes=quotes,
            failures=failures,
        )

    async def _fetch_one(
        self,
        source: BaseFetcher,
        pair: TradingPair,
        bucket_time: datetime,
    ) -> RawQuote | SourceFailure:
        """Fetch one source with timeout, turning failures into values.

        Cancellation of the caller is propagated, never converted.

        :returns: RawQuote on success, SourceFailure otherwise.
        """
        if not source.supports_pair(pair):
            logger.debug(f"[{source.name}] Does not support {pair}, skipping")
            return SourceUnavailable(source.name, f"Pair {pair} not supported")

        try:
            value = await asyncio.wait_for(
                source.fetch(pair, bucket_time),
                timeout=self.fetch_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[{source.name}] Timeout fetching {pair} at {bucket_time.isoformat()}")
            return SourceTimeout(source.name, f"No answer within {self.fetch_timeout}s")
        except SourceFailure as e:
            logger.warning(f"[{source.name}] Failed to fetch {pair} at {bucket_time.isoformat()}: {e}")
            return e
        except Exception as e:  # Misbehaving adapter
            logger.warning(
                f"[{source.name}] Unexpected error fetching {pair} at {bucket_time.isoformat()}: {e!r}"
            )
            return SourceUnavailable(source.name, f"Unexpected error: {e!r}")

        try:
            if isinstance(value, bool) or not isinstance(value, (Decimal, int)):
                raise InvalidArgument(f"Invalid price value {value!r}")
            quantize_price(value)
        except InvalidArgument:
            logger.warning(f"[{source.name}] Returned non-numeric price {value!r} for {pair}")
            return MalformedResponse(source.name, f"Non-numeric price {value!r} for {pair}")
        return RawQuote(source=source.name, value=Decimal(value))
