"""
Pytest configuration and shared fixtures for Market Broadcast tests.

This module provides:
- Stub exchange registry and recording event publisher
- A loguru capture fixture for asserting on logged failures
- Sample candle rows as exchanges return them
"""

from typing import Dict, List

import pytest
from loguru import logger

from market_broadcast.exchanges.registry import ExchangeRegistry
from tests.stubs import RecordingPublisher, StubExchange


@pytest.fixture
def binance() -> StubExchange:
    return StubExchange("binance")


@pytest.fixture
def exchanges(binance) -> ExchangeRegistry:
    registry = ExchangeRegistry()
    registry.register("binance", binance)
    return registry


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def log_records() -> List[Dict]:
    """Capture loguru records emitted during a test."""
    records: List[Dict] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


@pytest.fixture
def sample_candle():
    """Provide a sample candle row as returned by exchanges."""
    return [1700000000000, "35000.0", "35100.0", "34900.0", "35050.0", "100.5"]


@pytest.fixture
def sample_candles():
    """Provide a sequence of candle rows at 1-minute intervals."""
    base_price = 35000.0
    return [
        [
            1700000000000 + (i * 60000),
            base_price + (i * 10),
            base_price + (i * 10) + 50,
            base_price + (i * 10) - 50,
            base_price + (i * 10) + 25,
            100.0 + (i * 5),
        ]
        for i in range(20)
    ]
