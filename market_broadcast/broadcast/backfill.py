"""
Historical Backfill Runner

One-shot fetch of the most recent candles for a single pair and timeframe.
Every run ends with a fixed pause, whether the fetch succeeded or not, which
caps how fast a burst of queued backfills can hit one exchange.

The runner has no retry logic of its own. Failures propagate to the work
queue lane, which retries and dead-letters.

load_history() is the ranged variant: candles from a start time for a
filtered set of pairs, with per-pair failures counted instead of raised.
"""

import asyncio
from typing import List, Optional

from loguru import logger

from market_broadcast.config import BackfillConfig
from market_broadcast.core.models import (
    BackfillRequest,
    HistoricalFetchResult,
    HistoryLoadSummary,
    Timeframe,
    TradingPair,
)
from market_broadcast.core.work_queue import WorkQueue
from market_broadcast.market_data.service import MarketDataService
from market_broadcast.storage.pair_registry import PairRegistry


class HistoricalBackfillRunner:
    """
    Rate-limited historical candle backfill.

    Examples:
        >>> runner = HistoricalBackfillRunner(market_data, BackfillConfig(pause_seconds=0.3))
        >>> result = await runner.run(pair_id=1, timeframe="1m", limit=100)
        >>> result.saved_count
        100
    """

    def __init__(
        self,
        market_data: MarketDataService,
        config: Optional[BackfillConfig] = None,
        work_queue: Optional[WorkQueue] = None,
        pairs: Optional[PairRegistry] = None,
        log=None
    ):
        """
        Args:
            market_data: Fetch-and-persist collaborator
            config: Lane, pause and retry settings
            work_queue: Queue used by enqueue_active_pairs()
            pairs: Pair source used by enqueue_active_pairs()
            log: Logger to use, defaults to a loguru logger bound to this component
        """
        self.market_data = market_data
        self.config = config or BackfillConfig()
        self.work_queue = work_queue
        self.pairs = pairs
        self._log = log or logger.bind(component="backfill")

    @property
    def pause_seconds(self) -> float:
        return self.config.pause_seconds

    async def run(self, pair_id: int, timeframe: str, limit: int) -> HistoricalFetchResult:
        """
        Fetch and persist the most recent ``limit`` candles, then pause.

        Raises:
            pydantic.ValidationError: If the arguments are invalid
            Exception: Whatever the fetch-and-persist call raises
        """
        request = BackfillRequest(pair_id=pair_id, timeframe=timeframe, limit=limit)
        return await self.execute(request)

    async def execute(self, request: BackfillRequest) -> HistoricalFetchResult:
        """Run a validated request. Used as the backfill lane handler."""
        try:
            result = await self.market_data.fetch_and_save_historical_data(
                request.pair_id, request.timeframe.value, None, request.limit
            )
            self._log.info(
                f"Backfill pair {request.pair_id} ({request.timeframe.value}): {result.message}"
            )
            return result
        finally:
            await asyncio.sleep(self.pause_seconds)

    def register(self) -> None:
        """Register the backfill lane on the work queue."""
        self._require_queue().register_lane(
            self.config.lane,
            self.execute,
            concurrency=self.config.concurrency,
            max_attempts=self.config.max_attempts,
            retry_delay=self.config.retry_delay_seconds,
        )

    async def enqueue_active_pairs(
        self,
        timeframe: Optional[str] = None,
        limit: Optional[int] = None
    ) -> int:
        """
        Enqueue one backfill per active pair.

        Args:
            timeframe: Candle timeframe, defaults to the configured one
            limit: Candles per pair, defaults to the configured one

        Returns:
            int: Number of jobs enqueued
        """
        if self.pairs is None:
            raise RuntimeError("A pair registry is required to enqueue backfills")
        queue = self._require_queue()

        if timeframe is None:
            timeframe = self.config.timeframe
        if limit is None:
            limit = self.config.limit

        enqueued = 0
        for pair in await self.pairs.list_active_pairs():
            request = BackfillRequest(pair_id=pair.id, timeframe=timeframe, limit=limit)
            if queue.enqueue(self.config.lane, request) is not None:
                enqueued += 1

        self._log.info(
            f"Enqueued {enqueued} backfill job(s) ({timeframe}, limit={limit}) "
            f"on lane '{self.config.lane}'"
        )
        return enqueued

    async def load_history(
        self,
        since: Optional[int],
        timeframe: Optional[str] = None,
        limit: int = 1000,
        exchange_id: Optional[str] = None,
        pair: Optional[str] = None
    ) -> HistoryLoadSummary:
        """
        Load candles starting at ``since`` for every matching active pair.

        Pairs are processed one after another, directly rather than through
        the work queue. A failing pair is logged and counted, and the load
        moves on to the next one.

        Args:
            since: Start of the range in epoch milliseconds, None for the latest candles
            timeframe: Candle timeframe, defaults to the configured one
            limit: Maximum candles per pair
            exchange_id: Only pairs of this exchange slug ('all' or None for every exchange)
            pair: Pair id or symbol ('all' or None for every pair)

        Returns:
            HistoryLoadSummary: Succeeded and failed pair counts
        """
        if self.pairs is None:
            raise RuntimeError("A pair registry is required to load history")

        timeframe = Timeframe(timeframe if timeframe is not None else self.config.timeframe).value
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")

        selected = self._select_pairs(await self.pairs.list_active_pairs(), exchange_id, pair)
        self._log.info(
            f"Loading {timeframe} history for {len(selected)} trading pair(s) since {since}"
        )

        summary = HistoryLoadSummary()
        for trading_pair in selected:
            try:
                result = await self.market_data.fetch_and_save_historical_data(
                    trading_pair.id, timeframe, since, limit
                )
                self._log.info(
                    f"Loaded history for {trading_pair.exchange_id}:{trading_pair.symbol}: "
                    f"{result.message}"
                )
                summary.succeeded += 1
            except Exception as e:
                self._log.error(
                    f"Failed to load history for "
                    f"{trading_pair.exchange_id}:{trading_pair.symbol}: {e}"
                )
                summary.failed += 1

        self._log.info(
            f"History load finished: {summary.succeeded} succeeded, {summary.failed} failed"
        )
        return summary

    @staticmethod
    def _select_pairs(
        pairs: List[TradingPair],
        exchange_id: Optional[str],
        pair: Optional[str]
    ) -> List[TradingPair]:
        if exchange_id not in (None, "all"):
            pairs = [p for p in pairs if p.exchange_id == exchange_id]
        if pair is not None and pair.isdigit():
            pairs = [p for p in pairs if p.id == int(pair)]
        elif pair not in (None, "all"):
            pairs = [p for p in pairs if p.symbol == pair]
        return pairs

    def _require_queue(self) -> WorkQueue:
        if self.work_queue is None:
            raise RuntimeError("A work queue is required for queued backfills")
        return self.work_queue
