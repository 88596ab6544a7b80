"""
Broadcast Scheduler

Keeps the broadcast pipeline running without an external cron: every run
executes one cycle and then enqueues its own successor on the broadcast lane.
Only the delay varies. It is short after a cycle that completed and long after
a cycle that raised, so a broken upstream is not hammered.

No-overlap comes from the lane itself (concurrency 1), not from any state
kept here.
"""

from typing import Optional

from loguru import logger

from market_broadcast.broadcast.coordinator import BroadcastCoordinator
from market_broadcast.config import BroadcastConfig
from market_broadcast.core.models import BroadcastDelay, BroadcastTarget
from market_broadcast.core.work_queue import QueuedJob, WorkQueue


class BroadcastScheduler:
    """
    Self-rescheduling driver of the broadcast pipeline.

    State per run: Idle -> Running -> Rescheduled(short | long). There is no
    terminal state; stopping the work queue is the only way to halt it.

    Examples:
        >>> scheduler = BroadcastScheduler(coordinator, work_queue, BroadcastConfig())
        >>> scheduler.register()
        >>> await work_queue.start()
        >>> scheduler.start("binance", "BTC/USDT")  # or scheduler.start() for all pairs
    """

    def __init__(
        self,
        coordinator: BroadcastCoordinator,
        work_queue: WorkQueue,
        config: Optional[BroadcastConfig] = None,
        log=None
    ):
        self.coordinator = coordinator
        self.work_queue = work_queue
        self.config = config or BroadcastConfig()
        self._log = log or logger.bind(component="scheduler")

    @property
    def lane(self) -> str:
        return self.config.lane

    def register(self) -> None:
        """Register the broadcast lane with a single concurrency slot."""
        self.work_queue.register_lane(self.lane, self._handle, concurrency=1)

    def delay_seconds(self, delay: BroadcastDelay) -> float:
        """Concrete seconds for a delay class."""
        if delay is BroadcastDelay.LONG:
            return self.config.long_delay_seconds
        return self.config.short_delay_seconds

    def start(
        self,
        exchange_id: Optional[str] = None,
        symbol: Optional[str] = None
    ) -> Optional[QueuedJob]:
        """
        Kick off the pipeline by enqueuing its first run immediately.

        Args:
            exchange_id: Exchange slug, or None/'all' for every active pair
            symbol: Symbol, or None/'all' for every active pair
        """
        target = BroadcastTarget(exchange_id=exchange_id, symbol=symbol)
        self._log.info(f"Starting broadcast pipeline for {target}")
        return self.work_queue.enqueue(self.lane, target, delay=0.0)

    async def _handle(self, target: BroadcastTarget) -> None:
        await self.run(target)

    async def run(self, target: BroadcastTarget) -> BroadcastDelay:
        """
        Execute one cycle for ``target`` and enqueue the next run.

        Returns:
            BroadcastDelay: The delay class chosen for the successor
        """
        delay = BroadcastDelay.SHORT

        try:
            if target.is_all:
                count = await self.coordinator.broadcast_all_active_pairs()
                self._log.info(f"Broadcasted data for {count} trading pairs")
            else:
                self._log.info(f"Broadcasting data for {target}")
                outcome = await self.coordinator.run_cycle(target)
                self._log.debug(
                    f"Cycle for {target}: {outcome.succeeded_count}/"
                    f"{outcome.attempted_count} broadcasts succeeded"
                )
        except Exception as e:
            delay = BroadcastDelay.LONG
            self._log.bind(
                exchange=target.exchange_id, symbol=target.symbol, error=str(e)
            ).error(f"Broadcasting job error for {target}: {e}")

        self._reschedule(target, delay)
        return delay

    def _reschedule(self, target: BroadcastTarget, delay: BroadcastDelay) -> None:
        seconds = self.delay_seconds(delay)
        job = self.work_queue.enqueue(self.lane, target, delay=seconds)
        if job is not None:
            self._log.debug(f"Next broadcast for {target} in {seconds}s ({delay.value})")
