"""
Application wiring for the market data broadcaster.

Builds every component from Settings and manages their lifecycle:
database -> event bus -> work queue on enter, reverse order on exit.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

from loguru import logger

from market_broadcast.broadcast.backfill import HistoricalBackfillRunner
from market_broadcast.broadcast.coordinator import BroadcastCoordinator
from market_broadcast.broadcast.scheduler import BroadcastScheduler
from market_broadcast.config import Settings
from market_broadcast.core.event_bus import Event, EventBus, EventType
from market_broadcast.core.models import HistoryLoadSummary
from market_broadcast.core.work_queue import WorkQueue
from market_broadcast.exchanges.registry import ExchangeRegistry
from market_broadcast.market_data.service import MarketDataService
from market_broadcast.storage.database import Database
from market_broadcast.storage.pair_registry import SqlPairRegistry


class MarketBroadcastApp:
    """
    Fully wired broadcaster.

    Examples:
        >>> async with MarketBroadcastApp(settings) as app:
        ...     await app.run_broadcast(stop_event=stop)
    """

    def __init__(
        self,
        settings: Settings,
        exchanges: Optional[ExchangeRegistry] = None,
        database: Optional[Database] = None
    ):
        self.settings = settings

        self.database = database or Database(settings.database.url, echo=settings.database.echo)
        self.exchanges = exchanges or ExchangeRegistry(
            use_testnet=settings.exchanges.use_testnet,
            ccxt_options=settings.exchanges.ccxt_options,
        )
        self.pairs = SqlPairRegistry(self.database)
        self.event_bus = EventBus()
        self.work_queue = WorkQueue()

        self.market_data = MarketDataService(self.database, self.pairs, self.exchanges)
        self.coordinator = BroadcastCoordinator(
            self.exchanges,
            self.pairs,
            self.event_bus,
            order_book_depth=settings.broadcast.order_book_depth,
            kline_limit=settings.broadcast.kline_limit,
        )
        self.scheduler = BroadcastScheduler(
            self.coordinator, self.work_queue, settings.broadcast
        )
        self.backfill = HistoricalBackfillRunner(
            self.market_data,
            settings.backfill,
            work_queue=self.work_queue,
            pairs=self.pairs,
        )

        self.scheduler.register()
        self.backfill.register()

    async def start(self) -> None:
        await self.database.init()
        await self.event_bus.start()
        await self.work_queue.start()
        logger.info("Market broadcast app started")

    async def stop(self) -> None:
        await self.work_queue.stop()
        await self.event_bus.stop()
        await self.exchanges.close_all()
        await self.database.close()
        logger.info("Market broadcast app stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, _exc_type, _exc_val, _exc_tb):
        await self.stop()
        return False

    def log_events(self) -> None:
        """Subscribe a DEBUG logger to every event type."""
        async def log_event(event: Event) -> None:
            logger.debug(f"{event.broadcast_as} on {event.channel}")

        for event_type in EventType:
            self.event_bus.subscribe(event_type, log_event)

    async def seed_pairs(self) -> int:
        """Insert the pairs listed in configuration."""
        return await self.pairs.seed_pairs(
            (pair.exchange, pair.symbol, pair.active) for pair in self.settings.pairs
        )

    async def run_broadcast(
        self,
        stop_event: asyncio.Event,
        exchange_id: Optional[str] = None,
        symbol: Optional[str] = None
    ) -> None:
        """Kick off the broadcast pipeline and keep it running until stop_event is set."""
        self.scheduler.start(exchange_id, symbol)
        await stop_event.wait()
        logger.info("Stop requested, shutting down broadcast pipeline")

    async def run_backfill(
        self,
        timeframe: Optional[str] = None,
        limit: Optional[int] = None
    ) -> int:
        """Enqueue a backfill for every active pair and wait for the lane to drain."""
        enqueued = await self.backfill.enqueue_active_pairs(timeframe, limit)
        await self.work_queue.join(self.settings.backfill.lane)

        stats = self.work_queue.stats(self.settings.backfill.lane)
        logger.info(
            f"Backfill finished: {stats['processed']} succeeded, "
            f"{stats['dead_letters']} dead-lettered"
        )
        return enqueued

    async def run_history(
        self,
        exchange_id: Optional[str] = None,
        pair: Optional[str] = None,
        start_date: Optional[datetime] = None,
        timeframe: Optional[str] = None,
        limit: int = 1000
    ) -> HistoryLoadSummary:
        """
        Load candles from start_date onwards for the matching active pairs.

        start_date defaults to the start of yesterday (UTC). Naive datetimes
        are taken as UTC.
        """
        if start_date is None:
            today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
            start_date = today - timedelta(days=1)
        elif start_date.tzinfo is None:
            start_date = start_date.replace(tzinfo=timezone.utc)

        since = int(start_date.timestamp() * 1000)
        return await self.backfill.load_history(
            since, timeframe, limit, exchange_id=exchange_id, pair=pair
        )
