"""Bitstamp fetcher.

Endpoint: https://www.bitstamp.net/api/v2/ohlc/{base}{quote}/?step=3600&limit=1&start={unix}
Rate Limit: High (no key required)
Response: {"data": {"pair": "BTC/USD", "ohlc": [{"timestamp": "...", "close": "..."}]}}
"""

import logging
from datetime import datetime
from decimal import Decimal

from ..errors import MalformedResponse, SourceUnavailable
from ..HourBucket import to_unix_seconds
from ..TradingPair import TradingPair
from .base import BaseFetcher, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class BitstampFetcher(BaseFetcher):
    """Fetcher for Bitstamp public OHLC API.

    No API key required.
    """

    name = "bitstamp"
    BASE_URL = "https://www.bitstamp.net/api/v2"

    async def fetch(self, pair: TradingPair, bucket_time: datetime) -> Decimal:
        """Fetch the hourly close from Bitstamp.

        :param pair: Trading pair (e.g., BTC/USD).
        :param bucket_time: Hour-aligned candle start.
        :returns: Close price of the candle.
        """
        market = f"{pair.base}{pair.quote}"
        start = to_unix_seconds(bucket_time)
        url = f"{self.BASE_URL}/ohlc/{market}/"

        data = await self._get_json(
            url, params={"step": 3600, "limit": 1, "start": start}
        )

        try:
            candles = data["data"]["ohlc"]
        except (KeyError, TypeError) as e:
            raise MalformedResponse(self.name, f"Unexpected response for {market}: {e}") from e

        if not candles:
            raise SourceUnavailable(self.name, f"No candle for {market} at {bucket_time.isoformat()}")

        for candle in candles:
            try:
                timestamp = int(candle["timestamp"])
                close = candle["close"]
            except (KeyError, TypeError, ValueError) as e:
                raise MalformedResponse(self.name, f"Invalid candle for {market}: {candle!r}") from e
            if timestamp == start:
                return self._parse_price(close, pair)

        logger.debug(f"[bitstamp] Candles for {market} do not cover {bucket_time.isoformat()}: {candles}")
        raise SourceUnavailable(self.name, f"No candle for {market} at {bucket_time.isoformat()}")
