"""
Market Broadcast - continuous crypto market data republishing.

Polls exchange adapters for every active trading pair and republishes price,
order book and kline snapshots on an internal event bus, and backfills
historical candles under a rate limit.

Modules:
    core: Event bus, work queue and models
    broadcast: Coordinator, self-rescheduling scheduler, backfill runner
    exchanges: Binance and ccxt exchange adapters
    storage: Trading pair registry and candle persistence
    market_data: Historical fetch-and-persist service
"""

__version__ = "0.1.0"
__author__ = "Market Broadcast Team"
