"""
Binance REST client for market data snapshots.

This module wraps python-binance's AsyncClient behind the ExchangeAdapter
contract. Only public market data endpoints are used, so API credentials are
optional; when present they are loaded from environment variables.

Architecture:
    - Lazy connection: AsyncClient is created on the first request
    - A lock prevents concurrent first requests from creating two clients
    - Async context manager for automatic resource cleanup
    - Library and transport exceptions are wrapped in ExchangeError
"""

import asyncio
import os
from typing import List, Optional, Tuple

import aiohttp
from loguru import logger
from binance import AsyncClient
from binance.exceptions import BinanceAPIException, BinanceRequestException

from market_broadcast.core.models import Candle, OrderBook, Ticker
from market_broadcast.exchanges.base import ExchangeAdapter, ExchangeError


def to_binance_symbol(symbol: str) -> str:
    """
    Convert a unified symbol to Binance notation.

    Examples:
        >>> to_binance_symbol("BTC/USDT")
        'BTCUSDT'
        >>> to_binance_symbol("ethusdt")
        'ETHUSDT'
    """
    return symbol.replace("/", "").replace("-", "").upper()


def _float(value) -> Optional[float]:
    return float(value) if value not in (None, "") else None


# Transport failures surface as aiohttp errors or bare timeouts, not Binance exceptions
CLIENT_ERRORS = (
    BinanceAPIException,
    BinanceRequestException,
    aiohttp.ClientError,
    asyncio.TimeoutError,
)


def _describe(error: Exception) -> str:
    return str(error) or type(error).__name__


class BinanceExchange(ExchangeAdapter):
    """
    Binance market data adapter.

    Security:
        Credentials are read from BINANCE_API_KEY / BINANCE_API_SECRET.
        Both must be set or neither; they are never logged.

    Examples:
        >>> async with BinanceExchange() as binance:
        ...     ticker = await binance.get_ticker("BTC/USDT")
    """

    slug = "binance"

    def __init__(self, use_testnet: bool = False, requests_timeout: float = 10.0):
        """
        Initialize the adapter without connecting.

        Args:
            use_testnet (bool): Route requests to the Binance testnet
            requests_timeout (float): Per-request timeout in seconds
        """
        self.use_testnet = use_testnet
        self.requests_timeout = requests_timeout
        self.client: Optional[AsyncClient] = None
        self._connect_lock = asyncio.Lock()

    def _load_credentials(self) -> Tuple[Optional[str], Optional[str]]:
        """
        Load optional API credentials from the environment.

        Raises:
            ExchangeError: If only one of the two variables is set
        """
        api_key = os.getenv("BINANCE_API_KEY") or None
        api_secret = os.getenv("BINANCE_API_SECRET") or None

        if bool(api_key) != bool(api_secret):
            raise ExchangeError(
                self.slug,
                "BINANCE_API_KEY and BINANCE_API_SECRET must be set together"
            )
        return api_key, api_secret

    async def connect(self) -> AsyncClient:
        """Create the AsyncClient if it does not exist yet and return it."""
        async with self._connect_lock:
            if self.client is None:
                api_key, api_secret = self._load_credentials()
                try:
                    self.client = await AsyncClient.create(
                        api_key=api_key,
                        api_secret=api_secret,
                        testnet=self.use_testnet,
                        requests_params={"timeout": self.requests_timeout},
                    )
                except CLIENT_ERRORS as e:
                    raise ExchangeError(self.slug, f"Connection failed: {_describe(e)}") from e

                env_name = "testnet" if self.use_testnet else "mainnet"
                logger.info(f"Connected to Binance {env_name} REST API")
        return self.client

    async def close(self) -> None:
        """Close the AsyncClient session if one is open."""
        if self.client:
            await self.client.close_connection()
            self.client = None
            logger.info("Disconnected from Binance REST API")

    async def get_ticker(self, symbol: str) -> Ticker:
        client = await self.connect()
        try:
            raw = await client.get_ticker(symbol=to_binance_symbol(symbol))
        except CLIENT_ERRORS as e:
            raise ExchangeError(self.slug, _describe(e), symbol) from e

        return Ticker(
            symbol=symbol,
            timestamp=raw.get("closeTime"),
            last=_float(raw.get("lastPrice")),
            bid=_float(raw.get("bidPrice")),
            ask=_float(raw.get("askPrice")),
            high=_float(raw.get("highPrice")),
            low=_float(raw.get("lowPrice")),
            base_volume=_float(raw.get("volume")),
            quote_volume=_float(raw.get("quoteVolume")),
            change=_float(raw.get("priceChange")),
            percentage=_float(raw.get("priceChangePercent")),
        )

    async def get_order_book(self, symbol: str, depth: int = 20) -> OrderBook:
        client = await self.connect()
        try:
            raw = await client.get_order_book(symbol=to_binance_symbol(symbol), limit=depth)
        except CLIENT_ERRORS as e:
            raise ExchangeError(self.slug, _describe(e), symbol) from e

        return OrderBook(
            symbol=symbol,
            bids=raw.get("bids", [])[:depth],
            asks=raw.get("asks", [])[:depth],
            nonce=raw.get("lastUpdateId"),
        )

    async def get_ohlcv(
        self,
        symbol: str,
        timeframe: str,
        since: Optional[int] = None,
        limit: int = 100
    ) -> List[Candle]:
        client = await self.connect()
        params = {
            "symbol": to_binance_symbol(symbol),
            "interval": str(timeframe),
            "limit": limit,
        }
        if since is not None:
            params["startTime"] = since

        try:
            rows = await client.get_klines(**params)
        except CLIENT_ERRORS as e:
            raise ExchangeError(self.slug, _describe(e), symbol) from e

        # Kline rows: [open_time, open, high, low, close, volume, close_time, ...]
        return [Candle.from_row(row[:6]) for row in rows]

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, _exc_type, _exc_val, _exc_tb):
        await self.close()
        return False

    def __repr__(self) -> str:
        status = "connected" if self.client is not None else "disconnected"
        env = "testnet" if self.use_testnet else "mainnet"
        return f"BinanceExchange({env}, {status})"
