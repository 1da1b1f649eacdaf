"""
Event bus for internal pub/sub messaging.

Carries the engine's outbound notifications (fills, order placement and
cancellation, take-profits, regime changes, lifecycle) to consumers such as
persistence or chat notifiers. Delivery is at-least-once with no ack.
"""

import asyncio
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from hedgehog_engine.logging import get_logger

logger = get_logger(__name__)


class EventType(str, Enum):
    """Types of events published by the engine."""

    # Lifecycle events
    STARTED = "started"
    STOPPED = "stopped"
    QUOTING_PAUSED = "quotingPaused"

    # Order events
    ORDER_PLACED = "orderPlaced"
    ORDER_CANCELED = "orderCanceled"
    TAKE_PROFIT_CREATED = "takeProfitCreated"
    FILL = "fill"

    # Regime events
    REGIME_CHANGE = "regimeChange"
    REGIME_UPDATE = "regimeUpdate"

    # System events
    ERROR = "error"


@dataclass
class Event:
    """
    An event in the system.

    Carries type, timestamp, and arbitrary payload data.
    """

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    symbol: str | None = None
    id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __hash__(self) -> int:
        return hash(self.id)


# Type for event handlers
EventHandler = Callable[[Event], Coroutine[Any, Any, None]]


class EventBus:
    """
    Simple async event bus for internal pub/sub.

    Supports:
    - Multiple handlers per event type
    - Wildcard subscriptions
    - Replay of the last event of a type to late subscribers
    """

    def __init__(self) -> None:
        self._handlers: dict[EventType, list[EventHandler]] = {}
        self._wildcard_handlers: list[EventHandler] = []
        self._last_events: dict[EventType, Event] = {}
        self._lock = asyncio.Lock()
        self._published = 0
        self._handler_errors = 0

    async def subscribe(
        self,
        event_type: EventType | None,
        handler: EventHandler,
        *,
        replay_last: bool = False,
    ) -> None:
        """
        Subscribe to events.

        Args:
            event_type: Event type to subscribe to, or None for all events
            handler: Async handler function
            replay_last: Deliver the most recent event of this type
                immediately, so a late subscriber sees the current snapshot
        """
        async with self._lock:
            if event_type is None:
                self._wildcard_handlers.append(handler)
            else:
                self._handlers.setdefault(event_type, []).append(handler)
            last = self._last_events.get(event_type) if event_type is not None else None

        if replay_last and last is not None:
            await self._invoke([handler], last)

    async def unsubscribe(
        self,
        event_type: EventType | None,
        handler: EventHandler,
    ) -> None:
        """
        Unsubscribe from events.

        Args:
            event_type: Event type, or None for wildcard
            handler: Handler to remove
        """
        async with self._lock:
            if event_type is None:
                if handler in self._wildcard_handlers:
                    self._wildcard_handlers.remove(handler)
            else:
                handlers = self._handlers.get(event_type, [])
                if handler in handlers:
                    handlers.remove(handler)

    async def publish(self, event: Event) -> None:
        """
        Publish an event to all subscribers.

        Handler exceptions are logged and never reach the publisher.

        Args:
            event: Event to publish
        """
        handlers: list[EventHandler] = []

        async with self._lock:
            self._last_events[event.type] = event
            self._published += 1
            handlers.extend(self._handlers.get(event.type, []))
            handlers.extend(self._wildcard_handlers)

        if handlers:
            await self._invoke(handlers, event)

    async def emit(
        self,
        event_type: EventType,
        data: dict[str, Any] | None = None,
        symbol: str | None = None,
    ) -> Event:
        """Build and publish an event in one call."""
        event = Event(type=event_type, data=data or {}, symbol=symbol)
        await self.publish(event)
        return event

    async def _invoke(self, handlers: list[EventHandler], event: Event) -> None:
        results = await asyncio.gather(
            *[handler(event) for handler in handlers],
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                self._handler_errors += 1
                logger.warning(
                    "Event handler failed for %s: %s",
                    event.type.value,
                    result,
                )

    def last_event(self, event_type: EventType) -> Event | None:
        """Most recently published event of a type, if any."""
        return self._last_events.get(event_type)

    def get_stats(self) -> dict[str, int]:
        """Get bus statistics."""
        return {
            "published": self._published,
            "handler_errors": self._handler_errors,
            "subscriptions": sum(len(h) for h in self._handlers.values())
            + len(self._wildcard_handlers),
        }

    async def clear(self) -> None:
        """Remove all handlers and replay state."""
        async with self._lock:
            self._handlers.clear()
            self._wildcard_handlers.clear()
            self._last_events.clear()


# Global event bus instance
_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the global event bus instance."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Reset the global event bus (for testing)."""
    global _event_bus
    _event_bus = None
