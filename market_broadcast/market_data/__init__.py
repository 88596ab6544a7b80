"""
Historical market data acquisition and storage.
"""

from .service import MarketDataService

__all__ = ["MarketDataService"]
