"""DuckDB backed hourly price store.

Table layout (one row per pair and hour):

    hourly_prices(
        bucket_time_utc TIMESTAMP,      -- naive UTC, hour precision
        pair            VARCHAR(10),
        value           DECIMAL(18,8),
        PRIMARY KEY (bucket_time_utc, pair)
    )

DuckDB calls block, so they run in a worker thread; a lock serializes them
because a single connection must not be used from two threads at once.

.. code-block:: python

    async with DuckDBPriceStore.open("data/prices.duckdb") as store:
        await store.put(point)
        same = await store.get("BTC/USD", point.bucket_time)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, TypeVar

import duckdb  # type: ignore

from .errors import StoreUnavailable
from .HourBucket import Instant, normalize
from .PricePoint import PricePoint
from .PriceStore import HourlyPriceStore
from .TradingPair import TradingPair, normalize_pair

logger = logging.getLogger(__name__)

T = TypeVar("T")

TABLE_NAME = "hourly_prices"


def _to_db_time(bucket: datetime) -> datetime:
    return bucket.astimezone(timezone.utc).replace(tzinfo=None)


def _from_row(row: tuple[Any, ...]) -> PricePoint:
    bucket_time, pair, value = row
    return PricePoint(
        pair=pair,
        bucket_time=bucket_time.replace(tzinfo=timezone.utc),
        value=value if isinstance(value, Decimal) else Decimal(str(value)),
    )


class DuckDBPriceStore(HourlyPriceStore):
    """Persistent store on a DuckDB database file.

    :ivar path: Database file path, or ":memory:".
    """

    def __init__(self, path: str | Path = ":memory:") -> None:
        """Open the database and make sure the table exists.

        :param path: Database file path; parent directories are created.
        :raises StoreUnavailable: If the database cannot be opened.
        """
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._con = duckdb.connect(self.path)
            self._ensure_table()
        except duckdb.Error as e:
            raise StoreUnavailable(f"Cannot open price store {self.path}: {e}") from e
        self._lock = asyncio.Lock()
        self._closed = False

    @classmethod
    @asynccontextmanager
    async def open(cls, path: str | Path = ":memory:") -> AsyncIterator[DuckDBPriceStore]:
        """Open a store for the duration of a ``async with`` block.

        The connection is closed on every exit path, including failures.
        """
        store = await asyncio.to_thread(cls, path)
        try:
            yield store
        finally:
            await store.close()

    def _ensure_table(self) -> None:
        self._con.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
              bucket_time_utc TIMESTAMP NOT NULL,
              pair VARCHAR(10) NOT NULL,
              value DECIMAL(18,8) NOT NULL,
              PRIMARY KEY (bucket_time_utc, pair)
            );
            """
        )

    async def _run(self, fn: Callable[[], T]) -> T:
        if self._closed:
            raise StoreUnavailable(f"Price store {self.path} is closed")
        async with self._lock:
            worker = asyncio.ensure_future(asyncio.to_thread(fn))
            try:
                return await asyncio.shield(worker)
            except asyncio.CancelledError:
                # The thread keeps using the connection; hold the lock until it returns
                await asyncio.wait([worker])
                raise
            except duckdb.Error as e:
                logger.error(f"Price store {self.path} failed: {e}")
                raise StoreUnavailable(f"Price store {self.path} failed: {e}") from e

    async def get(self, pair: str | TradingPair, bucket_time: Instant) -> PricePoint | None:
        symbol = normalize_pair(pair).symbol
        bucket = _to_db_time(normalize(bucket_time))

        def query() -> tuple[Any, ...] | None:
            return self._con.execute(
                f"SELECT bucket_time_utc, pair, value FROM {TABLE_NAME} "
                "WHERE bucket_time_utc = ? AND pair = ?",
                [bucket, symbol],
            ).fetchone()

        row = await self._run(query)
        return _from_row(row) if row is not None else None

    async def put(self, point: PricePoint) -> None:
        params = [_to_db_time(point.bucket_time), point.pair, str(point.value)]

        def upsert() -> None:
            self._con.execute(
                f"""
                INSERT INTO {TABLE_NAME} (bucket_time_utc, pair, value)
                VALUES (?, ?, CAST(? AS DECIMAL(18,8)))
                ON CONFLICT (bucket_time_utc, pair) DO UPDATE SET value = excluded.value;
                """,
                params,
            )

        await self._run(upsert)
        logger.debug(f"Stored {point.pair} at {point.bucket_time.isoformat()}: {point.value}")

    async def range_scan(
        self, pair: str | TradingPair, start_bucket: Instant, end_bucket: Instant
    ) -> list[PricePoint]:
        symbol = normalize_pair(pair).symbol
        start = _to_db_time(normalize(start_bucket))
        end = _to_db_time(normalize(end_bucket))

        def query() -> list[tuple[Any, ...]]:
            return self._con.execute(
                f"SELECT bucket_time_utc, pair, value FROM {TABLE_NAME} "
                "WHERE pair = ? AND bucket_time_utc >= ? AND bucket_time_utc <= ? "
                "ORDER BY bucket_time_utc",
                [symbol, start, end],
            ).fetchall()

        rows = await self._run(query)
        return [_from_row(row) for row in rows]

    async def delete_older_than(self, cutoff_bucket: Instant) -> int:
        cutoff = _to_db_time(normalize(cutoff_bucket))

        def delete() -> int:
            count = self._con.execute(
                f"SELECT COUNT(*) FROM {TABLE_NAME} WHERE bucket_time_utc < ?", [cutoff]
            ).fetchone()[0]
            if count:
                self._con.execute(f"DELETE FROM {TABLE_NAME} WHERE bucket_time_utc < ?", [cutoff])
            return int(count)

        removed = await self._run(delete)
        logger.info(f"Removed {removed} price records older than {cutoff.isoformat()}Z")
        return removed

    async def close(self) -> None:
        if self._closed:
            return
        async with self._lock:
            self._closed = True
            await asyncio.to_thread(self._con.close)
