"""
Exchange adapters for market data snapshots.

This module handles:
- The adapter contract used by the broadcast pipeline
- Binance REST access through python-binance
- Every other exchange through ccxt
- Per-exchange adapter caching
"""

from .base import ExchangeAdapter, ExchangeError, ExchangeNotSupportedError
from .registry import ExchangeRegistry

__all__ = [
    "ExchangeAdapter",
    "ExchangeError",
    "ExchangeNotSupportedError",
    "ExchangeRegistry",
]
