"""
Exchange adapter contract.

Every exchange client used by the broadcast pipeline exposes the same three
read operations and returns normalized models, so the coordinator never needs
to know which library talks to which exchange.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from market_broadcast.core.models import Candle, OrderBook, Ticker


class ExchangeError(Exception):
    """
    Raised when an exchange call fails.

    Covers network errors, authentication problems, unknown symbols and rate
    limiting alike; callers treat every failure as "this attempt failed".
    """

    def __init__(self, exchange: str, message: str, symbol: Optional[str] = None):
        self.exchange = exchange
        self.symbol = symbol
        where = f"{exchange}:{symbol}" if symbol else exchange
        super().__init__(f"[{where}] {message}")


class ExchangeNotSupportedError(ExchangeError):
    """Raised when no adapter can be built for an exchange slug."""

    def __init__(self, exchange: str):
        super().__init__(exchange, f"Exchange '{exchange}' is not supported")


class ExchangeAdapter(ABC):
    """
    Read-only market data client for one exchange.

    Symbols use the unified 'BASE/QUOTE' notation (e.g. 'BTC/USDT');
    adapters translate to exchange-native notation themselves.
    """

    slug: str = ""

    @abstractmethod
    async def get_ticker(self, symbol: str) -> Ticker:
        """Fetch the current ticker for a symbol."""

    @abstractmethod
    async def get_order_book(self, symbol: str, depth: int = 20) -> OrderBook:
        """Fetch the top ``depth`` bid and ask levels for a symbol."""

    @abstractmethod
    async def get_ohlcv(
        self,
        symbol: str,
        timeframe: str,
        since: Optional[int] = None,
        limit: int = 100
    ) -> List[Candle]:
        """
        Fetch an OHLCV series.

        Args:
            symbol: Unified symbol
            timeframe: Candle timeframe (e.g. '1m', '1h')
            since: Start time in ms, or None for the most recent candles
            limit: Maximum number of candles
        """

    async def close(self) -> None:
        """Release network resources. Safe to call more than once."""
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.slug})"
