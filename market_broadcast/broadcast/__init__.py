"""
Continuous broadcast pipeline and historical backfill.

- BroadcastCoordinator: Fetches snapshots and publishes them as events
- BroadcastScheduler: Self-rescheduling driver with short/long delays
- HistoricalBackfillRunner: Rate-limited one-shot candle backfill
"""

from .backfill import HistoricalBackfillRunner
from .coordinator import BroadcastCoordinator
from .scheduler import BroadcastScheduler

__all__ = [
    "BroadcastCoordinator",
    "BroadcastScheduler",
    "HistoricalBackfillRunner",
]
