"""Kraken fetcher.

Endpoint: https://api.kraken.com/0/public/OHLC?pair={BASE}{QUOTE}&interval=60&since={unix}
Rate Limit: High (no key required)
History: only the most recent 720 candles are served
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
class KrakenFetcher(BaseFetcher):
    """Fetcher for Kraken public OHLC API.

    No API key required.
    """

    name = "kraken"
    BASE_URL = "https://api.kraken.com/0/public"

    # Kraken uses non-standard ticker symbols
    SYMBOL_MAP = {
        "btc": "XBT",  # Kraken uses XBT instead of BTC
    }

    # [time, open, high, low, close, vwap, volume, count]
    CLOSE_INDEX = 4

    async def fetch(self, pair: TradingPair, bucket_time: datetime) -> Decimal:
        """Fetch the hourly close from Kraken.

        :param pair: Trading pair (e.g., BTC/USD).
        :param bucket_time: Hour-aligned candle start.
        :returns: Close price of the candle.
        """
        kraken_base = self.SYMBOL_MAP.get(pair.base, pair.base.upper())
        kraken_pair = f"{kraken_base}{pair.quote.upper()}"
        start = to_unix_seconds(bucket_time)

        # "since" is exclusive, so ask from one second before the bucket
        data = await self._get_json(
            f"{self.BASE_URL}/OHLC",
            params={"pair": kraken_pair, "interval": 60, "since": start - 1},
        )

        if not isinstance(data, dict):
            raise MalformedResponse(self.name, f"Unexpected response for {kraken_pair}: {data!r}")

        errors = data.get("error")
        if errors:
            raise SourceUnavailable(self.name, f"API error for {kraken_pair}: {errors}")

        result = data.get("result")
        if not isinstance(result, dict):
            raise MalformedResponse(self.name, f"No result for {kraken_pair}")

        # Result is keyed by Kraken's own pair name (e.g. XXBTZUSD) plus "last"
        series = [v for k, v in result.items() if k != "last" and isinstance(v, list)]
        if not series:
            raise MalformedResponse(self.name, f"No OHLC series for {kraken_pair}")

        for candle in series[0]:
            try:
                timestamp = int(candle[0])
                close = candle[self.CLOSE_INDEX]
            except (IndexError, TypeError, ValueError) as e:
                raise MalformedResponse(self.name, f"Invalid candle for {kraken_pair}: {candle!r}") from e
            if timestamp == start:
                return self._parse_price(close, pair)

        raise SourceUnavailable(self.name, f"No candle for {kraken_pair} at {bucket_time.isoformat()}")
