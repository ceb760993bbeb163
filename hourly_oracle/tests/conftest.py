"""Shared fixtures for the hourly oracle test suite."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from hourly_oracle.src.fetchers import NO_RETRY, BaseFetcher
from hourly_oracle.src.TradingPair import TradingPair


class FakeFetcher(BaseFetcher):
    """In-process source returning a fixed price or raising a fixed error."""

    name = "fake"

    def __init__(
        self,
        name: str,
        price: Decimal | int | str | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
        supported: bool | set[str] = True,
        raw: bool = False,
    ) -> None:
        super().__init__(retry_policy=NO_RETRY)
        self.name = name
        self.price = price
        self.error = error
        self.delay = delay
        self.supported = supported
        self.raw = raw
        self.calls: list[tuple[TradingPair, datetime]] = []

    async def fetch(self, pair: TradingPair, bucket_time: datetime) -> Decimal:
        self.calls.append((pair, bucket_time))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.raw:
            return self.price
        return Decimal(str(self.price))

    def supports_pair(self, pair: TradingPair) -> bool:
        if isinstance(self.supported, set):
            return pair.symbol in self.supported
        return self.supported


@pytest.fixture
def make_fetcher():
    """Factory for FakeFetcher instances."""
    return FakeFetcher


@pytest.fixture
def bucket() -> datetime:
    """A fixed hour bucket: 2024-01-01 10:00 UTC."""
    return datetime(2024, 1, 1, 10, tzinfo=timezone.utc)


@pytest.fixture
def btc_usd() -> TradingPair:
    return TradingPair("btc", "usd")
