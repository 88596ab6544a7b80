"""
Core module for the event-driven broadcast pipeline.

This module provides the foundational components:
- EventBus: Publish-subscribe channel for market data events
- WorkQueue: Delayed job queue with concurrency-limited lanes
- models: Pipeline and market data models
"""

from .event_bus import Event, EventBus, EventType
from .work_queue import QueuedJob, QueueLaneError, WorkQueue

__all__ = [
    "Event",
    "EventBus",
    "EventType",
    "QueuedJob",
    "QueueLaneError",
    "WorkQueue",
]
