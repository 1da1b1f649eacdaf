"""
Runtime plumbing: time sources and the internal event bus.
"""

from hedgehog_engine.runtime.clock import Clock, ManualClock, SystemClock, get_system_clock
from hedgehog_engine.runtime.event_bus import (
    Event,
    EventBus,
    EventHandler,
    EventType,
    get_event_bus,
    reset_event_bus,
)

__all__ = [
    "Clock",
    "ManualClock",
    "SystemClock",
    "get_system_clock",
    "Event",
    "EventBus",
    "EventHandler",
    "EventType",
    "get_event_bus",
    "reset_event_bus",
]
