"""Unit tests for PriceCache."""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest

from hourly_oracle.src.price_cache import PriceCache
from hourly_oracle.src.PricePoint import PricePoint

T0 = datetime(2024, 1, 1, 10, tzinfo=timezone.utc)
T1 = datetime(2024, 1, 1, 11, tzinfo=timezone.utc)


class TestPriceCache:
    """Test TTL caching of points."""

    def test_negative_ttl(self) -> None:
        with pytest.raises(ValueError, match="ttl_seconds must not be negative"):
            PriceCache(ttl_seconds=-1)

    @patch("hourly_oracle.src.price_cache.time.time")
    def test_fresh_entry(self, mock_time) -> None:
        mock_time.return_value = 1000.0
        cache = PriceCache(ttl_seconds=60)
        point = PricePoint("BTC/USD", T0, Decimal("100"))
        cache.set(point)

        mock_time.return_value = 1059.0
        assert cache.get("BTC/USD", T0) is point

    @patch("hourly_oracle.src.price_cache.time.time")
    def test_stale_entry_dropped(self, mock_time) -> None:
        mock_time.return_value = 1000.0
        cache = PriceCache(ttl_seconds=60)
        cache.set(PricePoint("BTC/USD", T0, Decimal("100")))

        mock_time.return_value = 1061.0
        assert cache.get("BTC/USD", T0) is None
        assert len(cache) == 0

    def test_evict_older_than(self) -> None:
        cache = PriceCache()
        cache.set(PricePoint("BTC/USD", T0, Decimal("1")))
        cache.set(PricePoint("BTC/USD", T1, Decimal("2")))

        cache.evict_older_than(T1)
        assert cache.get("BTC/USD", T0) is None
        assert cache.get("BTC/USD", T1) is not None

    def test_clear(self) -> None:
        cache = PriceCache()
        cache.set(PricePoint("BTC/USD", T0, Decimal("1")))
        cache.clear()
        assert len(cache) == 0
