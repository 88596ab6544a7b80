"""
Unit tests for the Binance REST adapter.

Tests cover:
- Symbol conversion to Binance notation
- Optional credential loading from the environment
- Lazy AsyncClient creation with the testnet flag
- Ticker, order book and kline normalization
- Error wrapping and connection lifecycle
"""

import asyncio
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest
from binance.exceptions import BinanceRequestException

from market_broadcast.exchanges.base import ExchangeError
from market_broadcast.exchanges.binance import BinanceExchange, to_binance_symbol


@pytest.fixture
def client():
    client = AsyncMock()
    client.get_ticker.return_value = {
        "symbol": "BTCUSDT",
        "lastPrice": "35050.00",
        "bidPrice": "35049.50",
        "askPrice": "35050.50",
        "highPrice": "35500.00",
        "lowPrice": "34500.00",
        "volume": "1200.5",
        "quoteVolume": "42000000.0",
        "priceChange": "150.00",
        "priceChangePercent": "0.430",
        "closeTime": 1700000000000,
    }
    client.get_order_book.return_value = {
        "lastUpdateId": 123456,
        "bids": [["35049.50", "1.2"], ["35049.00", "0.8"]],
        "asks": [["35050.50", "0.9"], ["35051.00", "2.0"]],
    }
    client.get_klines.return_value = [
        [1700000000000, "35000.0", "35100.0", "34900.0", "35050.0", "100.5",
         1700000059999, "3520000.0", 1200, "50.0", "1760000.0", "0"],
    ]
    return client


@pytest.fixture
def no_credentials(monkeypatch):
    monkeypatch.delenv("BINANCE_API_KEY", raising=False)
    monkeypatch.delenv("BINANCE_API_SECRET", raising=False)


@pytest.mark.parametrize(
    "symbol,expected",
    [("BTC/USDT", "BTCUSDT"), ("eth/usdt", "ETHUSDT"), ("SOL-USDT", "SOLUSDT")],
)
def test_to_binance_symbol(symbol, expected):
    assert to_binance_symbol(symbol) == expected


class TestCredentials:
    """Test suite for optional credential loading."""

    def test_no_credentials(self, no_credentials):
        assert BinanceExchange()._load_credentials() == (None, None)

    def test_both_credentials(self, monkeypatch):
        monkeypatch.setenv("BINANCE_API_KEY", "key")
        monkeypatch.setenv("BINANCE_API_SECRET", "secret")

        assert BinanceExchange()._load_credentials() == ("key", "secret")

    def test_partial_credentials_rejected(self, monkeypatch):
        monkeypatch.setenv("BINANCE_API_KEY", "key")
        monkeypatch.delenv("BINANCE_API_SECRET", raising=False)

        with pytest.raises(ExchangeError, match="must be set together"):
            BinanceExchange()._load_credentials()


@pytest.mark.asyncio
class TestConnection:
    """Test suite for lazy connection and cleanup."""

    async def test_connect_creates_client_once(self, client, no_credentials):
        with patch("market_broadcast.exchanges.binance.AsyncClient") as mock_client:
            mock_client.create = AsyncMock(return_value=client)
            binance = BinanceExchange(use_testnet=True, requests_timeout=3.0)

            await binance.connect()
            await binance.connect()

            mock_client.create.assert_awaited_once_with(
                api_key=None,
                api_secret=None,
                testnet=True,
                requests_params={"timeout": 3.0},
            )
            assert "testnet, connected" in repr(binance)

    async def test_connect_failure_wrapped(self, no_credentials):
        with patch("market_broadcast.exchanges.binance.AsyncClient") as mock_client:
            mock_client.create = AsyncMock(side_effect=BinanceRequestException("timeout"))
            binance = BinanceExchange()

            with pytest.raises(ExchangeError, match="Connection failed"):
                await binance.connect()

            assert binance.client is None

    @pytest.mark.parametrize(
        "error",
        [aiohttp.ClientConnectionError("Connection refused"), asyncio.TimeoutError()],
    )
    async def test_connect_transport_failure_wrapped(self, no_credentials, error):
        with patch("market_broadcast.exchanges.binance.AsyncClient") as mock_client:
            mock_client.create = AsyncMock(side_effect=error)
            binance = BinanceExchange()

            with pytest.raises(ExchangeError, match="Connection failed"):
                await binance.connect()

            assert binance.client is None

    async def test_context_manager_closes(self, client, no_credentials):
        with patch("market_broadcast.exchanges.binance.AsyncClient") as mock_client:
            mock_client.create = AsyncMock(return_value=client)

            async with BinanceExchange() as binance:
                assert binance.client is client

            client.close_connection.assert_awaited_once()
            assert binance.client is None

    async def test_close_without_client(self):
        binance = BinanceExchange()

        await binance.close()

        assert repr(binance) == "BinanceExchange(mainnet, disconnected)"


@pytest.mark.asyncio
class TestMarketData:
    """Test suite for normalized market data calls."""

    @pytest.fixture
    def binance(self, client):
        adapter = BinanceExchange()
        adapter.client = client
        return adapter

    async def test_get_ticker(self, binance, client):
        ticker = await binance.get_ticker("BTC/USDT")

        client.get_ticker.assert_awaited_once_with(symbol="BTCUSDT")
        assert ticker.symbol == "BTC/USDT"
        assert ticker.timestamp == 1700000000000
        assert ticker.last == 35050.0
        assert ticker.bid == 35049.5
        assert ticker.quote_volume == 42000000.0
        assert ticker.percentage == 0.43

    async def test_get_order_book(self, binance, client):
        book = await binance.get_order_book("BTC/USDT", depth=1)

        client.get_order_book.assert_awaited_once_with(symbol="BTCUSDT", limit=1)
        assert book.bids == [[35049.5, 1.2]]
        assert book.asks == [[35050.5, 0.9]]
        assert book.nonce == 123456

    async def test_get_ohlcv_latest(self, binance, client):
        candles = await binance.get_ohlcv("BTC/USDT", "1m", limit=1)

        client.get_klines.assert_awaited_once_with(symbol="BTCUSDT", interval="1m", limit=1)
        assert len(candles) == 1
        assert candles[0].open == 35000.0
        assert candles[0].volume == 100.5

    async def test_get_ohlcv_since(self, binance, client):
        await binance.get_ohlcv("BTC/USDT", "1h", since=1700000000000, limit=10)

        client.get_klines.assert_awaited_once_with(
            symbol="BTCUSDT", interval="1h", limit=10, startTime=1700000000000
        )

    async def test_errors_are_wrapped(self, binance, client):
        client.get_ticker.side_effect = BinanceRequestException("Invalid JSON")

        with pytest.raises(ExchangeError) as exc_info:
            await binance.get_ticker("BTC/USDT")

        assert exc_info.value.exchange == "binance"
        assert exc_info.value.symbol == "BTC/USDT"

    @pytest.mark.parametrize(
        "error",
        [aiohttp.ClientConnectionError("Cannot connect to host"), asyncio.TimeoutError()],
    )
    @pytest.mark.parametrize(
        "method,call,args",
        [
            ("get_ticker", "get_ticker", ()),
            ("get_order_book", "get_order_book", (5,)),
            ("get_ohlcv", "get_klines", ("1m",)),
        ],
    )
    async def test_transport_errors_are_wrapped(self, binance, client, error, method, call, args):
        """Test that network failures surface as ExchangeError, not aiohttp or timeout errors."""
        getattr(client, call).side_effect = error

        with pytest.raises(ExchangeError) as exc_info:
            await getattr(binance, method)("BTC/USDT", *args)

        assert exc_info.value.symbol == "BTC/USDT"
        assert exc_info.value.__cause__ is error
