"""Bitfinex fetcher.

Endpoint: https://api-pub.bitfinex.com/v2/candles/trade:1h:t{BASE}{QUOTE}/hist
Rate Limit: 30 req/min (no key required)
Response: [[MTS, OPEN, CLOSE, HIGH, LOW, VOLUME], ...]
"""

import logging
from datetime import datetime
from decimal import Decimal

from ..errors import MalformedResponse, SourceUnavailable
from ..HourBucket import ONE_HOUR, to_unix_millis
from ..TradingPair import TradingPair
from .base import BaseFetcher, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class BitfinexFetcher(BaseFetcher):
    """Fetcher for Bitfinex public candles API.

    No API key required. Note that candle arrays put CLOSE before HIGH/LOW.
    """

    name = "bitfinex"
    BASE_URL = "https://api-pub.bitfinex.com/v2"

    # Bitfinex uses non-standard ticker symbols
    SYMBOL_MAP = {
        "usdt": "UST",
    }

    CLOSE_INDEX = 2

    def _symbol(self, pair: TradingPair) -> str:
        base = self.SYMBOL_MAP.get(pair.base, pair.base.upper())
        quote = self.SYMBOL_MAP.get(pair.quote, pair.quote.upper())
        # Symbols longer than three characters are colon separated
        if len(base) > 3 or len(quote) > 3:
            return f"t{base}:{quote}"
        return f"t{base}{quote}"

    async def fetch(self, pair: TradingPair, bucket_time: datetime) -> Decimal:
        """Fetch the hourly close from Bitfinex.

        :param pair: Trading pair (e.g., BTC/USD).
        :param bucket_time: Hour-aligned candle start.
        :returns: Close price of the candle.
        """
        symbol = self._symbol(pair)
        start = to_unix_millis(bucket_time)
        end = to_unix_millis(bucket_time + ONE_HOUR) - 1
        url = f"{self.BASE_URL}/candles/trade:1h:{symbol}/hist"

        data = await self._get_json(
            url, params={"start": start, "end": end, "limit": 1, "sort": 1}
        )

        if not isinstance(data, list):
            raise MalformedResponse(self.name, f"Unexpected response for {symbol}: {data!r}")
        if not data:
            raise SourceUnavailable(self.name, f"No candle for {symbol} at {bucket_time.isoformat()}")

        candle = data[0]
        try:
            timestamp = int(candle[0])
            close = candle[self.CLOSE_INDEX]
        except (IndexError, TypeError, ValueError) as e:
            raise MalformedResponse(self.name, f"Invalid candle for {symbol}: {candle!r}") from e

        if timestamp != start:
            logger.debug(f"[bitfinex] Candle {timestamp} for {symbol} does not match bucket {start}")
            raise SourceUnavailable(self.name, f"No candle for {symbol} at {bucket_time.isoformat()}")

        return self._parse_price(close, pair)
