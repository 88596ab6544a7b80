"""
Event Bus for the market data broadcast pipeline.

The broadcast coordinator publishes one event per successful fetch; the bus
fans them out to downstream consumers (UI gateways, analytics, risk engines).
Consumers subscribe per event type and may narrow a subscription to a subset
of public channels with a glob pattern such as ``crypto.price.binance.*``.

Publishing is fire-and-forget: the broadcaster never waits for subscribers,
and a failing or slow subscriber never affects the publisher or its peers.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from fnmatch import fnmatchcase
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from loguru import logger


class EventType(Enum):
    """
    Market data events republished by the pipeline.

    Values double as the event names used on public channels.

    Examples:
        >>> EventType.PRICE_UPDATED
        <EventType.PRICE_UPDATED: 'price.updated'>

        >>> EventType.KLINE_UPDATED.value
        'kline.updated'
    """

    PRICE_UPDATED = "price.updated"
    """Ticker snapshot for a pair. Payload: exchange, symbol, data."""

    ORDER_BOOK_UPDATED = "orderbook.updated"
    """Top-N order book levels for a pair. Payload: exchange, symbol, data."""

    KLINE_UPDATED = "kline.updated"
    """OHLCV series for a pair. Payload: exchange, symbol, timeframe, data."""

    @property
    def channel_prefix(self) -> str:
        return _CHANNEL_PREFIXES[self]

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"<EventType.{self.name}: '{self.value}'>"


_CHANNEL_PREFIXES = {
    EventType.PRICE_UPDATED: "crypto.price",
    EventType.ORDER_BOOK_UPDATED: "crypto.orderbook",
    EventType.KLINE_UPDATED: "crypto.kline",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Event:
    """
    One market data snapshot on its way to downstream consumers.

    Attributes:
        event_type (EventType): Kind of snapshot
        data (Dict[str, Any]): Payload, always carrying 'exchange' and 'symbol'
        source (str): Component that published the event
        timestamp (datetime): Creation time (aware UTC)

    Examples:
        >>> event = Event(
        ...     event_type=EventType.PRICE_UPDATED,
        ...     data={'exchange': 'binance', 'symbol': 'BTC/USDT', 'data': {}},
        ...     source='BroadcastCoordinator'
        ... )
        >>> event.channel
        'crypto.price.binance.BTC/USDT'
    """

    event_type: EventType
    data: Dict[str, Any]
    source: str
    timestamp: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        """
        Raises:
            TypeError: If event_type is not an EventType or data is not a dict
        """
        if not isinstance(self.event_type, EventType):
            raise TypeError(
                f"event_type must be EventType enum, got {type(self.event_type).__name__}"
            )
        if not isinstance(self.data, dict):
            raise TypeError(f"data must be dict, got {type(self.data).__name__}")

    @property
    def exchange(self) -> str:
        return str(self.data.get("exchange", ""))

    @property
    def symbol(self) -> str:
        return str(self.data.get("symbol", ""))

    @property
    def channel(self) -> str:
        """
        Public channel this event is delivered on.

        Kline channels also carry the timeframe so a consumer can follow a
        single series.
        """
        channel = f"{self.event_type.channel_prefix}.{self.exchange}.{self.symbol}"
        if self.event_type is EventType.KLINE_UPDATED:
            channel = f"{channel}.{self.data.get('timeframe', '')}"
        return channel

    @property
    def broadcast_as(self) -> str:
        """Event name used on the public channel (e.g. 'price.updated')."""
        return self.event_type.value

    def __str__(self) -> str:
        return f"Event({self.broadcast_as} on {self.channel} from {self.source})"


Handler = Callable[[Event], Union[None, Awaitable[None]]]


@dataclass
class Subscription:
    """A handler plus the optional channel pattern it listens to."""

    handler: Handler
    channel: Optional[str] = None

    def matches(self, event: Event) -> bool:
        return self.channel is None or fnmatchcase(event.channel, self.channel)

    @property
    def name(self) -> str:
        return getattr(self.handler, "__name__", repr(self.handler))


class EventBus:
    """
    Queued publish-subscribe channel for market data events.

    Features:
        - Subscriptions per EventType, optionally filtered by channel glob
        - Non-blocking publish() into an asyncio queue
        - Async handlers awaited, sync handlers run in a worker thread
        - Per-handler timeout so one slow consumer cannot stall delivery
        - Delivery counters for monitoring

    Examples:
        >>> bus = EventBus()
        >>> bus.subscribe(EventType.PRICE_UPDATED, on_price, channel="crypto.price.binance.*")
        >>> await bus.start()
        >>> await bus.publish(event)
        >>> await bus.stop()
    """

    def __init__(self, handler_timeout: float = 1.0, drain_timeout: float = 5.0):
        """
        Args:
            handler_timeout (float): Seconds a single handler may take per event
            drain_timeout (float): Seconds stop() waits for queued events
        """
        self._subscriptions: Dict[EventType, List[Subscription]] = {
            event_type: [] for event_type in EventType
        }
        self._handler_timeout = handler_timeout
        self._drain_timeout = drain_timeout

        # Queue and task belong to the loop that calls start()
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

        self._stats = {"published": 0, "delivered": 0, "failed": 0, "timed_out": 0}

    def subscribe(
        self,
        event_type: EventType,
        handler: Handler,
        channel: Optional[str] = None
    ) -> None:
        """
        Register a handler for one event type.

        Subscribing the same handler and pattern twice has no effect.

        Args:
            event_type (EventType): Event type to receive
            handler (Callable): Sync or async function accepting an Event
            channel (str, optional): Glob over Event.channel, e.g. 'crypto.kline.*.*.1h'

        Raises:
            TypeError: If event_type is not an EventType member
        """
        if not isinstance(event_type, EventType):
            raise TypeError(f"event_type must be EventType enum, got {type(event_type)}")

        subscription = Subscription(handler, channel)
        if subscription not in self._subscriptions[event_type]:
            self._subscriptions[event_type].append(subscription)

    def unsubscribe(self, event_type: EventType, handler: Handler) -> None:
        """Remove every subscription of ``handler`` for an event type."""
        self._subscriptions[event_type] = [
            s for s in self._subscriptions[event_type] if s.handler != handler
        ]

    def subscriber_count(self, event_type: EventType) -> int:
        return len(self._subscriptions[event_type])

    def clear_subscribers(self, event_type: Optional[EventType] = None) -> None:
        """Drop the subscriptions of one event type, or of all of them."""
        for key in ([event_type] if event_type is not None else list(EventType)):
            self._subscriptions[key].clear()

    async def publish(self, event: Event) -> None:
        """
        Queue an event for delivery and return immediately.

        Raises:
            TypeError: If event is not an Event instance
            RuntimeError: If the bus has not been started
        """
        if not isinstance(event, Event):
            raise TypeError(f"event must be Event instance, got {type(event)}")
        if self._queue is None:
            raise RuntimeError("Event bus not started. Call start() first.")

        self._queue.put_nowait(event)
        self._stats["published"] += 1

    async def start(self) -> None:
        """Start delivering queued events. Calling it twice is harmless."""
        if self._running:
            return

        self._queue = asyncio.Queue()
        self._running = True
        self._task = asyncio.create_task(self._deliver_loop(), name="event-bus")
        logger.debug("Event bus started")

    async def _deliver_loop(self) -> None:
        # Polls so a stopped, drained bus exits on its own
        while self._running or not self._queue.empty():
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.1)
            except asyncio.TimeoutError:
                continue

            try:
                await self._deliver(event)
            except Exception as e:
                logger.error(f"Error delivering {event}: {e}")
            finally:
                self._queue.task_done()

    async def _deliver(self, event: Event) -> None:
        subscriptions = [s for s in self._subscriptions[event.event_type] if s.matches(event)]

        logger.debug(f"Delivering {event.broadcast_as} on {event.channel} "
                     f"to {len(subscriptions)} handler(s)")

        for subscription in subscriptions:
            handler = subscription.handler
            if asyncio.iscoroutinefunction(handler):
                call = handler(event)
            else:
                call = asyncio.to_thread(handler, event)

            try:
                await asyncio.wait_for(call, timeout=self._handler_timeout)
                self._stats["delivered"] += 1
            except asyncio.TimeoutError:
                self._stats["timed_out"] += 1
                logger.warning(
                    f"Handler {subscription.name} exceeded {self._handler_timeout}s "
                    f"on {event.channel}"
                )
            except Exception as e:
                self._stats["failed"] += 1
                logger.error(f"Handler {subscription.name} failed on {event.channel}: {e}")

    async def stop(self) -> None:
        """
        Stop accepting work and deliver what is already queued.

        Waits up to ``drain_timeout`` seconds, then cancels delivery.
        """
        if not self._running:
            return

        self._running = False

        try:
            await asyncio.wait_for(self._queue.join(), timeout=self._drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Event queue did not drain within {self._drain_timeout}s, "
                f"dropping {self._queue.qsize()} event(s)"
            )

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.debug(f"Event bus stopped ({self.stats})")

    @property
    def stats(self) -> Dict[str, int]:
        """Published, delivered, failed and timed-out handler call counts."""
        return dict(self._stats)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def queue_size(self) -> int:
        """Events waiting for delivery (0 before start)."""
        return self._queue.qsize() if self._queue is not None else 0
