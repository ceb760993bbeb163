"""Unit tests for the exchange fetchers, against httpx.MockTransport."""

import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from hourly_oracle.src.errors import MalformedResponse, SourceTimeout, SourceUnavailable
from hourly_oracle.src.fetchers import (
    NO_RETRY,
    BitfinexFetcher,
    BitstampFetcher,
    CoinbaseFetcher,
    KrakenFetcher,
    RetryPolicy,
    get_available_fetchers,
    get_fetcher,
)
from hourly_oracle.src.TradingPair import TradingPair

BUCKET = datetime(2024, 1, 1, 10, tzinfo=timezone.utc)
BUCKET_TS = 1704103200
BTC_USD = TradingPair("btc", "usd")


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def json_handler(payload, status_code: int = 200, seen: list | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, content=json.dumps(payload).encode())

    return handler


class TestFetcherRegistry:
    """Test registration and lookup."""

    def test_available(self) -> None:
        assert get_available_fetchers() == ["bitfinex", "bitstamp", "coinbase", "kraken"]

    def test_get_fetcher_with_options(self) -> None:
        fetcher = get_fetcher("kraken", timeout=3.0, retry_policy=NO_RETRY)
        assert isinstance(fetcher, KrakenFetcher)
        assert fetcher.timeout == 3.0
        assert fetcher.retry_policy is NO_RETRY

    def test_unknown_fetcher(self) -> None:
        with pytest.raises(ValueError, match="Unknown fetcher 'binance'"):
            get_fetcher("binance")


class TestBitstampFetcher:
    """Test Bitstamp OHLC parsing."""

    @pytest.mark.asyncio
    async def test_close_of_matching_candle(self) -> None:
        seen: list[httpx.Request] = []
        payload = {
            "data": {
                "pair": "BTC/USD",
                "ohlc": [{"timestamp": str(BUCKET_TS), "open": "42000", "close": "42283.5"}],
            }
        }
        async with mock_client(json_handler(payload, seen=seen)) as client:
            fetcher = BitstampFetcher(retry_policy=NO_RETRY, client=client)
            price = await fetcher.fetch(BTC_USD, BUCKET)

        assert price == Decimal("42283.5")
        request = seen[0]
        assert request.url.path == "/api/v2/ohlc/btcusd/"
        assert request.url.params["step"] == "3600"
        assert request.url.params["start"] == str(BUCKET_TS)

    @pytest.mark.asyncio
    async def test_no_candle(self) -> None:
        payload = {"data": {"pair": "BTC/USD", "ohlc": []}}
        async with mock_client(json_handler(payload)) as client:
            fetcher = BitstampFetcher(retry_policy=NO_RETRY, client=client)
            with pytest.raises(SourceUnavailable, match="No candle"):
                await fetcher.fetch(BTC_USD, BUCKET)

    @pytest.mark.asyncio
    async def test_candle_for_other_hour(self) -> None:
        payload = {"data": {"ohlc": [{"timestamp": str(BUCKET_TS + 3600), "close": "1"}]}}
        async with mock_client(json_handler(payload)) as client:
            fetcher = BitstampFetcher(retry_policy=NO_RETRY, client=client)
            with pytest.raises(SourceUnavailable, match="No candle"):
                await fetcher.fetch(BTC_USD, BUCKET)

    @pytest.mark.asyncio
    async def test_unexpected_structure(self) -> None:
        async with mock_client(json_handler({"code": "404"})) as client:
            fetcher = BitstampFetcher(retry_policy=NO_RETRY, client=client)
            with pytest.raises(MalformedResponse):
                await fetcher.fetch(BTC_USD, BUCKET)


class TestBitfinexFetcher:
    """Test Bitfinex candle parsing."""

    @pytest.mark.asyncio
    async def test_close_index(self) -> None:
        """Bitfinex puts CLOSE at index 2."""
        seen: list[httpx.Request] = []
        payload = [[BUCKET_TS * 1000, 42000.0, 42100.5, 42300.0, 41900.0, 12.3]]
        async with mock_client(json_handler(payload, seen=seen)) as client:
            fetcher = BitfinexFetcher(retry_policy=NO_RETRY, client=client)
            price = await fetcher.fetch(BTC_USD, BUCKET)

        assert price == Decimal("42100.5")
        request = seen[0]
        assert request.url.path == "/v2/candles/trade:1h:tBTCUSD/hist"
        assert request.url.params["start"] == str(BUCKET_TS * 1000)
        assert request.url.params["end"] == str((BUCKET_TS + 3600) * 1000 - 1)

    def test_symbols(self) -> None:
        fetcher = BitfinexFetcher()
        assert fetcher._symbol(TradingPair("eth", "usdt")) == "tETHUST"
        assert fetcher._symbol(TradingPair("rose", "usd")) == "tROSE:USD"

    @pytest.mark.asyncio
    async def test_empty_history(self) -> None:
        async with mock_client(json_handler([])) as client:
            fetcher = BitfinexFetcher(retry_policy=NO_RETRY, client=client)
            with pytest.raises(SourceUnavailable, match="No candle"):
                await fetcher.fetch(BTC_USD, BUCKET)

    @pytest.mark.asyncio
    async def test_error_payload(self) -> None:
        async with mock_client(json_handler({"error": "ERR_RATE_LIMIT"})) as client:
            fetcher = BitfinexFetcher(retry_policy=NO_RETRY, client=client)
            with pytest.raises(MalformedResponse):
                await fetcher.fetch(BTC_USD, BUCKET)


class TestKrakenFetcher:
    """Test Kraken OHLC parsing."""

    @pytest.mark.asyncio
    async def test_close_of_matching_candle(self) -> None:
        seen: list[httpx.Request] = []
        payload = {
            "error": [],
            "result": {
                "XXBTZUSD": [
                    [BUCKET_TS, "42000.0", "42300.0", "41900.0", "42150.1", "42100.0", "5.1", 100],
                    [BUCKET_TS + 3600, "42150.1", "42400.0", "42000.0", "42222.2", "42200.0", "4.2", 90],
                ],
                "last": BUCKET_TS + 3600,
            },
        }
        async with mock_client(json_handler(payload, seen=seen)) as client:
            fetcher = KrakenFetcher(retry_policy=NO_RETRY, client=client)
            price = await fetcher.fetch(BTC_USD, BUCKET)

        assert price == Decimal("42150.1")
        assert seen[0].url.params["pair"] == "XBTUSD"
        assert seen[0].url.params["since"] == str(BUCKET_TS - 1)

    @pytest.mark.asyncio
    async def test_api_error(self) -> None:
        payload = {"error": ["EQuery:Unknown asset pair"]}
        async with mock_client(json_handler(payload)) as client:
            fetcher = KrakenFetcher(retry_policy=NO_RETRY, client=client)
            with pytest.raises(SourceUnavailable, match="Unknown asset pair"):
                await fetcher.fetch(BTC_USD, BUCKET)


class TestCoinbaseFetcher:
    """Test Coinbase candle parsing."""

    @pytest.mark.asyncio
    async def test_close_of_matching_candle(self) -> None:
        seen: list[httpx.Request] = []
        payload = [
            [BUCKET_TS + 3600, 41000, 43000, 42000, 42500.25, 10],
            [BUCKET_TS, 41000, 43000, 42000, 42010.75, 10],
        ]
        async with mock_client(json_handler(payload, seen=seen)) as client:
            fetcher = CoinbaseFetcher(retry_policy=NO_RETRY, client=client)
            price = await fetcher.fetch(BTC_USD, BUCKET)

        assert price == Decimal("42010.75")
        assert seen[0].url.path == "/products/BTC-USD/candles"
        assert seen[0].url.params["granularity"] == "3600"


class TestTransportErrors:
    """Test HTTP error mapping in BaseFetcher."""

    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        async with mock_client(json_handler({"message": "NotFound"}, status_code=404)) as client:
            fetcher = CoinbaseFetcher(retry_policy=NO_RETRY, client=client)
            with pytest.raises(SourceUnavailable, match="HTTP 404") as exc_info:
                await fetcher.fetch(BTC_USD, BUCKET)
        assert exc_info.value.status_code == 404
        assert exc_info.value.source == "coinbase"

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async with mock_client(handler) as client:
            fetcher = KrakenFetcher(retry_policy=NO_RETRY, client=client)
            with pytest.raises(SourceTimeout):
                await fetcher.fetch(BTC_USD, BUCKET)

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with mock_client(handler) as client:
            fetcher = KrakenFetcher(retry_policy=NO_RETRY, client=client)
            with pytest.raises(SourceUnavailable, match="Request failed"):
                await fetcher.fetch(BTC_USD, BUCKET)

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>maintenance</html>")

        async with mock_client(handler) as client:
            fetcher = BitstampFetcher(retry_policy=NO_RETRY, client=client)
            with pytest.raises(MalformedResponse, match="Invalid JSON"):
                await fetcher.fetch(BTC_USD, BUCKET)

    @pytest.mark.asyncio
    async def test_retry_after_server_error(self) -> None:
        """A 503 followed by a good answer should succeed on retry."""
        responses = [
            httpx.Response(503, content=b"busy"),
            httpx.Response(200, content=json.dumps([[BUCKET_TS * 1000, 1, 2, 3, 0.5, 1]]).encode()),
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        async with mock_client(handler) as client:
            fetcher = BitfinexFetcher(retry_policy=RetryPolicy(attempts=2, base_delay=0.0), client=client)
            price = await fetcher.fetch(BTC_USD, BUCKET)

        assert price == Decimal(2)
        assert responses == []
