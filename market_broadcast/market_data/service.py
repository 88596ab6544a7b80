"""
Historical market data fetching and persistence.
"""

from datetime import datetime, timezone
from typing import List, Optional

from loguru import logger
from sqlalchemy import select

from market_broadcast.core.models import Candle, HistoricalFetchResult, Timeframe
from market_broadcast.exchanges.registry import ExchangeRegistry
from market_broadcast.storage.database import Database
from market_broadcast.storage.pair_registry import PairRegistry
from market_broadcast.storage.tables import HistoricalCandle


def _naive_utc(timestamp_ms: int) -> datetime:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).replace(tzinfo=None)


class MarketDataService:
    """
    Fetches OHLCV series from exchanges and stores candles not seen before.

    Errors are not swallowed: a backfill job relies on them reaching the work
    queue's failure handling.
    """

    def __init__(
        self,
        database: Database,
        pairs: PairRegistry,
        exchanges: ExchangeRegistry,
        log=None
    ):
        self.database = database
        self.pairs = pairs
        self.exchanges = exchanges
        self._log = log or logger.bind(component="market_data")

    async def fetch_and_save_historical_data(
        self,
        pair_id: int,
        timeframe: str,
        since: Optional[int] = None,
        limit: Optional[int] = 1000
    ) -> HistoricalFetchResult:
        """
        Fetch candles for a pair and persist the ones not already stored.

        Args:
            pair_id: Trading pair identifier
            timeframe: Candle timeframe (1m, 5m, 15m, 30m, 1h, 4h, 1d)
            since: Start time in ms, or None for the most recent candles
            limit: Maximum number of candles to fetch

        Raises:
            PairNotFoundError: If the pair does not exist
            ExchangeError: If the exchange call fails
        """
        timeframe = Timeframe(timeframe)
        pair = await self.pairs.get_pair(pair_id)
        exchange = self.exchanges.get_public(pair.exchange_id)

        candles = await exchange.get_ohlcv(pair.symbol, timeframe.value, since, limit)
        saved, duplicates = await self._save(pair_id, timeframe, candles)

        result = HistoricalFetchResult(
            pair_id=pair_id,
            symbol=pair.symbol,
            timeframe=timeframe,
            fetched_count=len(candles),
            saved_count=saved,
            duplicate_count=duplicates,
        )
        self._log.bind(pair_id=pair_id, exchange=pair.exchange_id, timeframe=timeframe.value).debug(
            f"{pair.exchange_id}:{pair.symbol} {timeframe.value}: {result.message}"
        )
        return result

    async def _save(self, pair_id: int, timeframe: Timeframe, candles: List[Candle]):
        if not candles:
            return 0, 0

        stamps = {candle.timestamp: _naive_utc(candle.timestamp) for candle in candles}

        async with self.database.session() as session:
            existing = set(
                (
                    await session.execute(
                        select(HistoricalCandle.timestamp)
                        .where(HistoricalCandle.trading_pair_id == pair_id)
                        .where(HistoricalCandle.timeframe == timeframe.value)
                        .where(HistoricalCandle.timestamp.in_(list(stamps.values())))
                    )
                ).scalars()
            )

            saved = 0
            duplicates = 0
            for candle in candles:
                opened_at = stamps[candle.timestamp]
                if opened_at in existing:
                    duplicates += 1
                    continue

                session.add(
                    HistoricalCandle(
                        trading_pair_id=pair_id,
                        timeframe=timeframe.value,
                        timestamp=opened_at,
                        open=candle.open,
                        high=candle.high,
                        low=candle.low,
                        close=candle.close,
                        volume=candle.volume,
                    )
                )
                existing.add(opened_at)
                saved += 1

        return saved, duplicates

    async def get_latest_historical_data(
        self,
        pair_id: int,
        timeframe: str,
        limit: int = 100
    ) -> List[Candle]:
        """Return the newest ``limit`` stored candles in ascending time order."""
        timeframe = Timeframe(timeframe)
        async with self.database.session() as session:
            rows = (
                await session.execute(
                    select(HistoricalCandle)
                    .where(HistoricalCandle.trading_pair_id == pair_id)
                    .where(HistoricalCandle.timeframe == timeframe.value)
                    .order_by(HistoricalCandle.timestamp.desc())
                    .limit(limit)
                )
            ).scalars().all()

        return [
            Candle(
                timestamp=int(row.timestamp.replace(tzinfo=timezone.utc).timestamp() * 1000),
                open=row.open,
                high=row.high,
                low=row.low,
                close=row.close,
                volume=row.volume,
            )
            for row in reversed(rows)
        ]
