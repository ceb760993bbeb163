"""Coinbase Exchange fetcher.

Endpoint: https://api.exchange.coinbase.com/products/{BASE}-{QUOTE}/candles?granularity=3600
Rate Limit: High (no key required)
Response: [[time, low, high, open, close, volume], ...] newest first
"""

import logging
from datetime import datetime
from decimal import Decimal

from ..errors import MalformedResponse, SourceUnavailable
from ..HourBucket import ONE_HOUR, to_unix_seconds
from ..TradingPair import TradingPair
from .base import BaseFetcher, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class CoinbaseFetcher(BaseFetcher):
    """Fetcher for Coinbase Exchange candles API.

    No API key required for public candles endpoint.
    """

    name = "coinbase"
    BASE_URL = "https://api.exchange.coinbase.com"

    CLOSE_INDEX = 4

    async def fetch(self, pair: TradingPair, bucket_time: datetime) -> Decimal:
        """Fetch the hourly close from Coinbase Exchange.

        :param pair: Trading pair (e.g., BTC/USD).
        :param bucket_time: Hour-aligned candle start.
        :returns: Close price of the candle.
        """
        symbol = f"{pair.base.upper()}-{pair.quote.upper()}"
        url = f"{self.BASE_URL}/products/{symbol}/candles"
        start = to_unix_seconds(bucket_time)

        data = await self._get_json(
            url,
            params={
                "granularity": 3600,
                "start": bucket_time.isoformat(),
                "end": (bucket_time + ONE_HOUR).isoformat(),
            },
        )

        if not isinstance(data, list):
            raise MalformedResponse(self.name, f"Unexpected response for {symbol}: {data!r}")

        for candle in data:
            try:
                timestamp = int(candle[0])
                close = candle[self.CLOSE_INDEX]
            except (IndexError, TypeError, ValueError) as e:
                raise MalformedResponse(self.name, f"Invalid candle for {symbol}: {candle!r}") from e
            if timestamp == start:
                return self._parse_price(close, pair)

        raise SourceUnavailable(self.name, f"No candle for {symbol} at {bucket_time.isoformat()}")
