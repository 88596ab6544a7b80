"""
Broadcast Coordinator

Executes one broadcast cycle: fetches price, order book and kline snapshots
from exchange adapters and republishes them on the event bus.

Failures are isolated at the (exchange, symbol, data kind) level. A failing
fetch is logged and reported as a falsy BroadcastResult; it never prevents
sibling fetches in the same cycle.
"""

from typing import Awaitable, Callable, Optional

from loguru import logger

from market_broadcast.core.event_bus import Event, EventBus, EventType
from market_broadcast.core.models import (
    BroadcastResult,
    BroadcastTarget,
    CycleOutcome,
)
from market_broadcast.exchanges.registry import ExchangeRegistry
from market_broadcast.storage.pair_registry import PairRegistry


class BroadcastCoordinator:
    """
    Fetch-and-publish operations for single pairs and for all active pairs.

    Attributes:
        exchanges (ExchangeRegistry): Source of exchange adapters
        pairs (PairRegistry): Source of active trading pairs
        event_bus (EventBus): Destination of market data events

    Examples:
        >>> coordinator = BroadcastCoordinator(exchanges, pairs, bus)
        >>> ok = await coordinator.broadcast_price("binance", "BTC/USDT")
        >>> processed = await coordinator.broadcast_all_active_pairs()
    """

    def __init__(
        self,
        exchanges: ExchangeRegistry,
        pairs: PairRegistry,
        event_bus: EventBus,
        order_book_depth: int = 20,
        kline_limit: int = 100,
        log=None
    ):
        """
        Args:
            exchanges: Cached exchange adapters
            pairs: Active trading pair source
            event_bus: Any object with an async publish(event) method
            order_book_depth: Depth used by cycles that broadcast order books
            kline_limit: Candles per kline broadcast when no limit is given
            log: Logger to use, defaults to a loguru logger bound to this component
        """
        self.exchanges = exchanges
        self.pairs = pairs
        self.event_bus = event_bus
        self.order_book_depth = order_book_depth
        self.kline_limit = kline_limit
        self._log = log or logger.bind(component="broadcast")

    async def _broadcast(
        self,
        kind: str,
        exchange_id: str,
        symbol: str,
        fetch_and_publish: Callable[[], Awaitable[None]],
        label: str
    ) -> BroadcastResult:
        try:
            await fetch_and_publish()
        except Exception as e:
            self._log.bind(
                exchange=exchange_id, symbol=symbol, kind=kind, error=str(e)
            ).error(f"Failed to broadcast {label} for {exchange_id}:{symbol}: {e}")
            return BroadcastResult(
                kind=kind, exchange_id=exchange_id, symbol=symbol, ok=False, error=str(e)
            )

        return BroadcastResult(kind=kind, exchange_id=exchange_id, symbol=symbol, ok=True)

    async def broadcast_price(self, exchange_id: str, symbol: str) -> BroadcastResult:
        """
        Fetch the ticker for a pair and publish PRICE_UPDATED.

        Returns:
            BroadcastResult: Truthy on success, falsy with error detail on failure
        """
        async def fetch_and_publish() -> None:
            exchange = self.exchanges.get_public(exchange_id)
            ticker = await exchange.get_ticker(symbol)
            await self.event_bus.publish(Event(
                event_type=EventType.PRICE_UPDATED,
                data={
                    "exchange": exchange_id,
                    "symbol": symbol,
                    "data": ticker.model_dump(),
                },
                source="BroadcastCoordinator",
            ))

        return await self._broadcast("price", exchange_id, symbol, fetch_and_publish, "price")

    async def broadcast_order_book(
        self,
        exchange_id: str,
        symbol: str,
        depth: int = 20
    ) -> BroadcastResult:
        """Fetch the top ``depth`` order book levels and publish ORDER_BOOK_UPDATED."""
        async def fetch_and_publish() -> None:
            exchange = self.exchanges.get_public(exchange_id)
            order_book = await exchange.get_order_book(symbol, depth)
            await self.event_bus.publish(Event(
                event_type=EventType.ORDER_BOOK_UPDATED,
                data={
                    "exchange": exchange_id,
                    "symbol": symbol,
                    "data": order_book.model_dump(),
                },
                source="BroadcastCoordinator",
            ))

        return await self._broadcast(
            "order_book", exchange_id, symbol, fetch_and_publish, "order book"
        )

    async def broadcast_klines(
        self,
        exchange_id: str,
        symbol: str,
        timeframe: str,
        limit: Optional[int] = None
    ) -> BroadcastResult:
        """Fetch the latest ``limit`` candles (kline_limit by default) and publish KLINE_UPDATED."""
        timeframe = str(timeframe)
        if limit is None:
            limit = self.kline_limit

        async def fetch_and_publish() -> None:
            exchange = self.exchanges.get_public(exchange_id)
            candles = await exchange.get_ohlcv(symbol, timeframe, None, limit)
            await self.event_bus.publish(Event(
                event_type=EventType.KLINE_UPDATED,
                data={
                    "exchange": exchange_id,
                    "symbol": symbol,
                    "timeframe": timeframe,
                    "data": [candle.model_dump() for candle in candles],
                },
                source="BroadcastCoordinator",
            ))

        return await self._broadcast(
            "klines", exchange_id, symbol, fetch_and_publish, f"klines ({timeframe})"
        )

    async def broadcast_all_active_pairs(self) -> int:
        """
        Broadcast price and order book for every active pair.

        The returned count is the number of pairs *processed*: a pair whose
        price and order book fetches both failed still counts. Only an error
        escaping a pair's processing leaves it uncounted.

        Raises:
            Exception: Whatever the pair registry raises
        """
        outcome = await self._broadcast_all(CycleOutcome())
        return outcome.processed_pairs

    async def run_cycle(self, target: BroadcastTarget) -> CycleOutcome:
        """
        Run one broadcast cycle for a target and return its outcome counts.

        A concrete target gets price then order book; an "all" target covers
        every active pair.
        """
        outcome = CycleOutcome()
        if target.is_all:
            return await self._broadcast_all(outcome)

        outcome.record(await self.broadcast_price(target.exchange_id, target.symbol))
        outcome.record(await self.broadcast_order_book(
            target.exchange_id, target.symbol, self.order_book_depth
        ))
        return outcome

    async def _broadcast_all(self, outcome: CycleOutcome) -> CycleOutcome:
        pairs = await self.pairs.list_active_pairs()

        for pair in pairs:
            try:
                outcome.record(await self.broadcast_price(pair.exchange_id, pair.symbol))
                outcome.record(await self.broadcast_order_book(
                    pair.exchange_id, pair.symbol, self.order_book_depth
                ))
                outcome.processed_pairs += 1
            except Exception as e:
                outcome.had_any_failure = True
                self._log.bind(pair_id=pair.id, error=str(e)).error(
                    f"Error broadcasting data for pair {pair.id}: {e}"
                )

        return outcome
