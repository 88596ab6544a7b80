"""
Unit tests for Event dataclass and EventBus system.

Tests cover:
- Event creation, validation and timestamp generation
- Public channel naming per event type
- Subscription management
- Channel-filtered subscriptions and delivery stats
- Async publish, delivery and graceful shutdown
"""

import asyncio
from datetime import datetime

import pytest

from market_broadcast.core.event_bus import Event, EventBus, EventType


def price_event(exchange="binance", symbol="BTC/USDT") -> Event:
    return Event(
        event_type=EventType.PRICE_UPDATED,
        data={"exchange": exchange, "symbol": symbol, "data": {"last": 35050.0}},
        source="BroadcastCoordinator",
    )


class TestEventType:
    """Test suite for EventType values."""

    def test_wire_names(self):
        """Test that event values are the names used on public channels."""
        assert EventType.PRICE_UPDATED.value == "price.updated"
        assert EventType.ORDER_BOOK_UPDATED.value == "orderbook.updated"
        assert EventType.KLINE_UPDATED.value == "kline.updated"

    def test_str_and_repr(self):
        assert str(EventType.PRICE_UPDATED) == "PRICE_UPDATED"
        assert repr(EventType.KLINE_UPDATED) == "<EventType.KLINE_UPDATED: 'kline.updated'>"


class TestEvent:
    """Test suite for Event dataclass."""

    def test_event_creation_valid_data(self):
        """Test creating Event with valid EventType and dict data."""
        event = price_event()

        assert event.event_type == EventType.PRICE_UPDATED
        assert event.data["exchange"] == "binance"
        assert event.source == "BroadcastCoordinator"
        assert isinstance(event.timestamp, datetime)

    def test_event_timestamp_custom(self):
        """Test that custom timestamp is preserved."""
        custom_time = datetime(2025, 1, 1, 12, 0, 0)

        event = Event(
            event_type=EventType.ORDER_BOOK_UPDATED,
            data={"exchange": "kraken", "symbol": "BTC/USDT"},
            source="test",
            timestamp=custom_time
        )

        assert event.timestamp == custom_time

    def test_event_invalid_type_raises_typeerror(self):
        """Test that invalid event_type raises TypeError."""
        with pytest.raises(TypeError) as exc_info:
            Event(event_type="price.updated", data={}, source="test")

        assert "event_type must be EventType enum" in str(exc_info.value)

    def test_event_invalid_data_raises_typeerror(self):
        """Test that non-dict data raises TypeError."""
        with pytest.raises(TypeError) as exc_info:
            Event(event_type=EventType.PRICE_UPDATED, data=["BTC/USDT"], source="test")

        assert "data must be dict" in str(exc_info.value)

    def test_price_channel(self):
        event = price_event("binance", "BTC/USDT")

        assert event.channel == "crypto.price.binance.BTC/USDT"
        assert event.broadcast_as == "price.updated"

    def test_order_book_channel(self):
        event = Event(
            EventType.ORDER_BOOK_UPDATED,
            {"exchange": "kraken", "symbol": "ETH/USDT", "data": {}},
            "test",
        )

        assert event.channel == "crypto.orderbook.kraken.ETH/USDT"
        assert event.broadcast_as == "orderbook.updated"

    def test_kline_channel_includes_timeframe(self):
        """Test that kline channels are scoped to a single series."""
        event = Event(
            EventType.KLINE_UPDATED,
            {"exchange": "binance", "symbol": "BTC/USDT", "timeframe": "1h", "data": []},
            "test",
        )

        assert event.channel == "crypto.kline.binance.BTC/USDT.1h"
        assert event.broadcast_as == "kline.updated"

    def test_str_mentions_channel(self):
        assert "crypto.price.binance.BTC/USDT" in str(price_event())


class TestEventBusSubscriptions:
    """Test suite for subscribe/unsubscribe/emit."""

    def test_subscribe_and_count(self):
        bus = EventBus()

        def handler(event):
            pass

        bus.subscribe(EventType.PRICE_UPDATED, handler)
        bus.subscribe(EventType.PRICE_UPDATED, handler)

        # Duplicate subscriptions are ignored
        assert bus.subscriber_count(EventType.PRICE_UPDATED) == 1
        assert bus.subscriber_count(EventType.KLINE_UPDATED) == 0

    def test_subscribe_rejects_non_enum(self):
        bus = EventBus()

        with pytest.raises(TypeError):
            bus.subscribe("price.updated", lambda e: None)

    def test_unsubscribe(self):
        bus = EventBus()

        def handler(event):
            pass

        bus.subscribe(EventType.PRICE_UPDATED, handler)
        bus.unsubscribe(EventType.PRICE_UPDATED, handler)
        # Unknown callbacks are ignored
        bus.unsubscribe(EventType.PRICE_UPDATED, handler)

        assert bus.subscriber_count(EventType.PRICE_UPDATED) == 0

    def test_clear_subscribers(self):
        bus = EventBus()
        bus.subscribe(EventType.PRICE_UPDATED, lambda e: None)
        bus.subscribe(EventType.KLINE_UPDATED, lambda e: None)

        bus.clear_subscribers(EventType.PRICE_UPDATED)
        assert bus.subscriber_count(EventType.PRICE_UPDATED) == 0
        assert bus.subscriber_count(EventType.KLINE_UPDATED) == 1

        bus.clear_subscribers()
        assert bus.subscriber_count(EventType.KLINE_UPDATED) == 0

    def test_same_handler_on_different_channels(self):
        bus = EventBus()

        def handler(event):
            pass

        bus.subscribe(EventType.KLINE_UPDATED, handler, channel="crypto.kline.*.*.1m")
        bus.subscribe(EventType.KLINE_UPDATED, handler, channel="crypto.kline.*.*.1h")

        assert bus.subscriber_count(EventType.KLINE_UPDATED) == 2

        bus.unsubscribe(EventType.KLINE_UPDATED, handler)
        assert bus.subscriber_count(EventType.KLINE_UPDATED) == 0


@pytest.mark.asyncio
class TestEventBusAsync:
    """Test suite for EventBus async queue functionality."""

    async def test_publish_before_start_raises(self):
        bus = EventBus()

        with pytest.raises(RuntimeError, match="not started"):
            await bus.publish(price_event())

    async def test_publish_dispatches_to_sync_and_async_handlers(self):
        bus = EventBus()
        sync_received = []
        async_received = []

        def sync_handler(event):
            sync_received.append(event)

        async def async_handler(event):
            async_received.append(event)

        bus.subscribe(EventType.PRICE_UPDATED, sync_handler)
        bus.subscribe(EventType.PRICE_UPDATED, async_handler)

        await bus.start()
        await bus.publish(price_event())
        await bus.stop()

        assert len(sync_received) == 1
        assert len(async_received) == 1

    async def test_failing_handler_does_not_block_others(self):
        bus = EventBus()
        received = []

        async def broken(event):
            raise RuntimeError("subscriber down")

        async def healthy(event):
            received.append(event)

        bus.subscribe(EventType.PRICE_UPDATED, broken)
        bus.subscribe(EventType.PRICE_UPDATED, healthy)

        await bus.start()
        await bus.publish(price_event())
        await bus.publish(price_event(symbol="ETH/USDT"))
        await bus.stop()

        assert [e.data["symbol"] for e in received] == ["BTC/USDT", "ETH/USDT"]

    async def test_slow_handler_times_out(self):
        """Test that a handler exceeding the timeout is abandoned."""
        bus = EventBus(handler_timeout=0.05)
        received = []

        async def slow(event):
            await asyncio.sleep(1.0)

        bus.subscribe(EventType.PRICE_UPDATED, slow)
        bus.subscribe(EventType.PRICE_UPDATED, received.append)

        await bus.start()
        await bus.publish(price_event())
        await bus.stop()

        assert len(received) == 1

    async def test_stop_drains_queue(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventType.PRICE_UPDATED, received.append)

        await bus.start()
        for _ in range(5):
            await bus.publish(price_event())
        await bus.stop()

        assert len(received) == 5
        assert bus.queue_size == 0
        assert bus.is_running is False

    async def test_start_and_stop_are_idempotent(self):
        bus = EventBus()

        await bus.start()
        await bus.start()
        assert bus.is_running is True

        await bus.stop()
        await bus.stop()
        assert bus.is_running is False

    async def test_publish_rejects_non_event(self):
        bus = EventBus()
        await bus.start()

        with pytest.raises(TypeError):
            await bus.publish({"exchange": "binance"})

        await bus.stop()

    async def test_channel_filter(self):
        """Test that a channel pattern narrows a subscription."""
        bus = EventBus()
        binance_only = []
        everything = []

        bus.subscribe(
            EventType.PRICE_UPDATED, binance_only.append, channel="crypto.price.binance.*"
        )
        bus.subscribe(EventType.PRICE_UPDATED, everything.append)

        await bus.start()
        await bus.publish(price_event("binance", "BTC/USDT"))
        await bus.publish(price_event("kraken", "BTC/USDT"))
        await bus.stop()

        assert [e.exchange for e in binance_only] == ["binance"]
        assert [e.exchange for e in everything] == ["binance", "kraken"]

    async def test_stats_count_outcomes(self):
        bus = EventBus(handler_timeout=0.05)

        async def broken(event):
            raise RuntimeError("subscriber down")

        async def slow(event):
            await asyncio.sleep(1.0)

        async def healthy(event):
            pass

        for handler in (broken, slow, healthy):
            bus.subscribe(EventType.ORDER_BOOK_UPDATED, handler)

        await bus.start()
        await bus.publish(Event(
            EventType.ORDER_BOOK_UPDATED,
            {"exchange": "binance", "symbol": "BTC/USDT", "data": {}},
            "test",
        ))
        await bus.stop()

        assert bus.stats == {"published": 1, "delivered": 1, "failed": 1, "timed_out": 1}
