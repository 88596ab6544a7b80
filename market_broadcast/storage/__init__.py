"""
Relational storage for trading pairs and historical candles.
"""

from .database import Database
from .pair_registry import PairNotFoundError, PairRegistry, SqlPairRegistry

__all__ = [
    "Database",
    "PairNotFoundError",
    "PairRegistry",
    "SqlPairRegistry",
]
