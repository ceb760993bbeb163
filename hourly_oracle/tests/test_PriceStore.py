"""Unit tests for the price stores."""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from hourly_oracle.src.DuckDBPriceStore import DuckDBPriceStore
from hourly_oracle.src.errors import StoreUnavailable
from hourly_oracle.src.PricePoint import PricePoint
from hourly_oracle.src.PriceStore import CachedPriceStore, InMemoryPriceStore

UTC = timezone.utc
T0 = datetime(2024, 1, 1, 10, tzinfo=UTC)
HOUR = timedelta(hours=1)


def point(hours: int = 0, value: str = "100", pair: str = "BTC/USD") -> PricePoint:
    return PricePoint(pair, T0 + hours * HOUR, Decimal(value))


class TestInMemoryPriceStore:
    """Test the dict backed store."""

    @pytest.mark.asyncio
    async def test_put_then_get(self) -> None:
        store = InMemoryPriceStore()
        await store.put(point(value="42000.12345678"))

        found = await store.get("btc-usd", T0 + timedelta(minutes=30))
        assert found is not None
        assert found.value == Decimal("42000.12345678")

    @pytest.mark.asyncio
    async def test_missing(self) -> None:
        assert await InMemoryPriceStore().get("BTC/USD", T0) is None

    @pytest.mark.asyncio
    async def test_put_replaces(self) -> None:
        store = InMemoryPriceStore()
        await store.put(point(value="1"))
        await store.put(point(value="2"))
        assert len(store) == 1
        assert (await store.get("BTC/USD", T0)).value == Decimal(2)

    @pytest.mark.asyncio
    async def test_range_scan_inclusive_sorted(self) -> None:
        store = InMemoryPriceStore()
        for hours in (3, 0, 1, 5):
            await store.put(point(hours))
        await store.put(point(1, pair="ETH/USD"))

        found = await store.range_scan("BTC/USD", T0, T0 + 3 * HOUR)
        assert [p.bucket_time for p in found] == [T0, T0 + HOUR, T0 + 3 * HOUR]

    @pytest.mark.asyncio
    async def test_delete_older_than(self) -> None:
        store = InMemoryPriceStore()
        for hours in range(4):
            await store.put(point(hours))

        removed = await store.delete_older_than(T0 + 2 * HOUR)
        assert removed == 2
        assert await store.get("BTC/USD", T0 + HOUR) is None
        assert await store.get("BTC/USD", T0 + 2 * HOUR) is not None


class TestCachedPriceStore:
    """Test the read-through cache wrapper."""

    @pytest.mark.asyncio
    async def test_get_served_from_cache(self) -> None:
        backend = InMemoryPriceStore()
        store = CachedPriceStore(backend, ttl_seconds=60)
        await store.put(point())

        # Remove from the backend behind the cache's back
        await backend.delete_older_than(T0 + HOUR)
        assert await store.get("BTC/USD", T0) == point()

    @pytest.mark.asyncio
    async def test_read_through_populates_cache(self) -> None:
        backend = InMemoryPriceStore()
        await backend.put(point())
        store = CachedPriceStore(backend)

        assert await store.get("BTC/USD", T0) == point()
        assert len(store.cache) == 1

    @pytest.mark.asyncio
    async def test_delete_evicts_cache(self) -> None:
        store = CachedPriceStore(InMemoryPriceStore())
        await store.put(point(0))
        await store.put(point(2))

        assert await store.delete_older_than(T0 + HOUR) == 1
        assert await store.get("BTC/USD", T0) is None
        assert len(store.cache) == 1

    @pytest.mark.asyncio
    async def test_zero_ttl_disables_cache(self) -> None:
        store = CachedPriceStore(InMemoryPriceStore(), ttl_seconds=0)
        await store.put(point())
        assert len(store.cache) == 0
        assert await store.get("BTC/USD", T0) == point()

    @pytest.mark.asyncio
    async def test_close_clears_cache(self) -> None:
        store = CachedPriceStore(InMemoryPriceStore())
        await store.put(point())
        await store.close()
        assert len(store.cache) == 0


class TestDuckDBPriceStore:
    """Test the DuckDB persistent store."""

    @pytest.mark.asyncio
    async def test_put_then_get(self, tmp_path) -> None:
        async with DuckDBPriceStore.open(tmp_path / "prices.duckdb") as store:
            await store.put(point(value="42000.12345678"))
            found = await store.get("BTC/USD", T0)

        assert found == point(value="42000.12345678")
        assert found.bucket_time.tzinfo is not None

    @pytest.mark.asyncio
    async def test_persists_across_handles(self, tmp_path) -> None:
        path = tmp_path / "nested" / "prices.duckdb"
        async with DuckDBPriceStore.open(path) as store:
            await store.put(point())
        async with DuckDBPriceStore.open(path) as store:
            assert await store.get("BTC/USD", T0) == point()

    @pytest.mark.asyncio
    async def test_upsert(self, tmp_path) -> None:
        async with DuckDBPriceStore.open(tmp_path / "prices.duckdb") as store:
            await store.put(point(value="1"))
            await store.put(point(value="2.5"))
            found = await store.range_scan("BTC/USD", T0, T0)

        assert len(found) == 1
        assert found[0].value == Decimal("2.5")

    @pytest.mark.asyncio
    async def test_range_scan(self, tmp_path) -> None:
        async with DuckDBPriceStore.open(tmp_path / "prices.duckdb") as store:
            for hours in (2, 0, 1, 4):
                await store.put(point(hours))
            await store.put(point(1, pair="ETH/USD"))
            found = await store.range_scan("BTC/USD", T0, T0 + 2 * HOUR)

        assert [p.bucket_time for p in found] == [T0, T0 + HOUR, T0 + 2 * HOUR]
        assert all(p.pair == "BTC/USD" for p in found)

    @pytest.mark.asyncio
    async def test_delete_older_than(self, tmp_path) -> None:
        async with DuckDBPriceStore.open(tmp_path / "prices.duckdb") as store:
            for hours in range(5):
                await store.put(point(hours))
            removed = await store.delete_older_than(T0 + 3 * HOUR)
            remaining = await store.range_scan("BTC/USD", T0, T0 + 10 * HOUR)

        assert removed == 3
        assert [p.bucket_time for p in remaining] == [T0 + 3 * HOUR, T0 + 4 * HOUR]

    @pytest.mark.asyncio
    async def test_closed_store(self, tmp_path) -> None:
        async with DuckDBPriceStore.open(tmp_path / "prices.duckdb") as store:
            pass
        with pytest.raises(StoreUnavailable, match="is closed"):
            await store.get("BTC/USD", T0)

    @pytest.mark.asyncio
    async def test_cancelled_call_holds_lock_until_thread_returns(self, tmp_path) -> None:
        """A cancelled call should not free the connection while its thread still runs."""
        finished = []

        def slow() -> None:
            time.sleep(0.2)
            finished.append(True)

        async with DuckDBPriceStore.open(tmp_path / "prices.duckdb") as store:
            task = asyncio.ensure_future(store._run(slow))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            assert finished == [True]
            assert not store._lock.locked()
            await store.put(point())
            assert await store.get("BTC/USD", T0) == point()
