"""
Generic exchange adapter backed by ccxt's asyncio support.

Any exchange id known to ccxt (kraken, bybit, whitebit, ...) can be used.
ccxt's built-in rate limiter is always enabled.
"""

from typing import Any, Dict, List, Optional

import ccxt.async_support as ccxt_async
from ccxt.base.errors import BaseError as CcxtError
from loguru import logger

from market_broadcast.core.models import Candle, OrderBook, Ticker
from market_broadcast.exchanges.base import (
    ExchangeAdapter,
    ExchangeError,
    ExchangeNotSupportedError,
)


class CcxtExchange(ExchangeAdapter):
    """
    Market data adapter for any ccxt-supported exchange.

    Examples:
        >>> kraken = CcxtExchange("kraken")
        >>> book = await kraken.get_order_book("BTC/USDT", depth=10)
        >>> await kraken.close()
    """

    def __init__(
        self,
        slug: str,
        credentials: Optional[Dict[str, str]] = None,
        options: Optional[Dict[str, Any]] = None,
        client: Any = None
    ):
        """
        Build the ccxt client for an exchange.

        Args:
            slug: ccxt exchange id (e.g. 'kraken')
            credentials: Optional apiKey/secret mapping
            options: Extra ccxt constructor options
            client: Pre-built ccxt client, mainly for tests

        Raises:
            ExchangeNotSupportedError: If ccxt has no exchange with this id
        """
        self.slug = slug

        if client is None:
            exchange_class = getattr(ccxt_async, slug, None)
            if exchange_class is None or slug not in ccxt_async.exchanges:
                raise ExchangeNotSupportedError(slug)

            config = {"enableRateLimit": True}
            config.update(credentials or {})
            config.update(options or {})
            client = exchange_class(config)

        self._client = client

    async def get_ticker(self, symbol: str) -> Ticker:
        try:
            raw = await self._client.fetch_ticker(symbol)
        except CcxtError as e:
            raise ExchangeError(self.slug, str(e), symbol) from e

        return Ticker(
            symbol=symbol,
            timestamp=raw.get("timestamp"),
            last=raw.get("last") if raw.get("last") is not None else raw.get("close"),
            bid=raw.get("bid"),
            ask=raw.get("ask"),
            high=raw.get("high"),
            low=raw.get("low"),
            base_volume=raw.get("baseVolume"),
            quote_volume=raw.get("quoteVolume"),
            change=raw.get("change"),
            percentage=raw.get("percentage"),
        )

    async def get_order_book(self, symbol: str, depth: int = 20) -> OrderBook:
        try:
            raw = await self._client.fetch_order_book(symbol, depth)
        except CcxtError as e:
            raise ExchangeError(self.slug, str(e), symbol) from e

        return OrderBook(
            symbol=symbol,
            timestamp=raw.get("timestamp"),
            bids=raw.get("bids", [])[:depth],
            asks=raw.get("asks", [])[:depth],
            nonce=raw.get("nonce"),
        )

    async def get_ohlcv(
        self,
        symbol: str,
        timeframe: str,
        since: Optional[int] = None,
        limit: int = 100
    ) -> List[Candle]:
        try:
            rows = await self._client.fetch_ohlcv(symbol, str(timeframe), since, limit)
        except CcxtError as e:
            raise ExchangeError(self.slug, str(e), symbol) from e

        return [Candle.from_row(row) for row in rows]

    async def close(self) -> None:
        try:
            await self._client.close()
        except CcxtError as e:
            logger.warning(f"Error closing {self.slug} client: {e}")
