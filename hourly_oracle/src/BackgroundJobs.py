"""Periodic background jobs: cache priming and retention pruning.

Each job runs on its own timer as an independent asyncio task and uses only
the public store and aggregator operations. A run opens its own store handle
through ``store_factory`` and releases it when the run ends, whether it
succeeded or failed. A failed run is logged and the loop carries on; within a
priming run a pair that cannot be priced is logged and the next pair is tried.

.. code-block:: python

    primer = CachePrimer(["BTC/USD"], lambda: DuckDBPriceStore.open(path), aggregator)
    pruner = RetentionPruner(lambda: DuckDBPriceStore.open(path))
    await asyncio.gather(primer.run(), pruner.run())
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timedelta, timezone

from .errors import OracleError
from .HourBucket import normalize
from .PriceAggregator import PriceAggregator
from .PriceStore import HourlyPriceStore
from .TradingPair import TradingPair, normalize_pair

logger = logging.getLogger(__name__)

StoreFactory = Callable[[], AbstractAsyncContextManager[HourlyPriceStore]]


class PeriodicJob(ABC):
    """Runs ``run_once`` every ``interval`` until cancelled.

    :ivar interval: Time between the start of two runs.
    :ivar runs: Completed runs (successful or not).
    :ivar failures: Runs that raised.
    """

    name = "job"

    def __init__(self, store_factory: StoreFactory, interval: timedelta) -> None:
        if interval <= timedelta(0):
            raise ValueError("interval must be positive")
        self.store_factory = store_factory
        self.interval = interval
        self.runs = 0
        self.failures = 0

    @abstractmethod
    async def run_once(self) -> None:
        """Perform a single run."""
        pass

    async def run(self) -> None:
        """Loop forever; cancel the task to stop."""
        logger.info(f"Starting {self.name} every {self.interval}")
        while True:
            started = time.monotonic()
            try:
                await self.run_once()
            except Exception as e:
                self.failures += 1
                logger.error(f"Error during {self.name}: {e}")
            finally:
                self.runs += 1
            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, self.interval.total_seconds() - elapsed))


class CachePrimer(PeriodicJob):
    """Computes and stores the current hour's price when it is missing.

    :ivar pairs: Pairs to prime.
    :ivar aggregator: Aggregation engine.
    """

    name = "cache priming"

    DEFAULT_INTERVAL = timedelta(minutes=5)

    def __init__(
        self,
        pairs: Sequence[str | TradingPair],
        store_factory: StoreFactory,
        aggregator: PriceAggregator,
        interval: timedelta = DEFAULT_INTERVAL,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the primer.

        :param pairs: Pairs to keep primed.
        :param store_factory: Returns an async context manager yielding a store.
        :param aggregator: Aggregation engine.
        :param interval: Time between runs (default: 5 minutes).
        :param clock: Returns the current UTC time (for tests).
        """
        super().__init__(store_factory, interval)
        self.pairs = [normalize_pair(p) for p in pairs]
        self.aggregator = aggregator
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def run_once(self) -> None:
        bucket = normalize(self.clock())
        async with self.store_factory() as store:
            for pair in self.pairs:
                try:
                    if await store.get(pair, bucket) is not None:
                        continue
                    result = await self.aggregator.aggregate(pair, bucket)
                    await store.put(result.to_price_point())
                except OracleError as e:
                    logger.error(f"Failed to prime {pair} at {bucket.isoformat()}: {e}")
                    continue
                logger.info(f"Primed cache with new price for {pair} at {bucket.isoformat()}")


class RetentionPruner(PeriodicJob):
    """Deletes points older than the retention period.

    :ivar retention: Age after which points are removed.
    """

    name = "retention pruning"

    DEFAULT_INTERVAL = timedelta(hours=24)
    DEFAULT_RETENTION = timedelta(days=30)

    def __init__(
        self,
        store_factory: StoreFactory,
        retention: timedelta = DEFAULT_RETENTION,
        interval: timedelta = DEFAULT_INTERVAL,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the pruner.

        :param store_factory: Returns an async context manager yielding a store.
        :param retention: Keep points newer than this (default: 30 days).
        :param interval: Time between runs (default: 24 hours).
        :param clock: Returns the current UTC time (for tests).
        """
        super().__init__(store_factory, interval)
        if retention <= timedelta(0):
            raise ValueError("retention must be positive")
        self.retention = retention
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.last_removed = 0

    async def run_once(self) -> None:
        cutoff = normalize(self.clock() - self.retention)
        async with self.store_factory() as store:
            self.last_removed = await store.delete_older_than(cutoff)
        logger.info(f"Removed {self.last_removed} price records older than {cutoff.isoformat()}")
