"""Async pub/sub EventBus that keeps the chat engine free of UI code."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from typing import Any, Callable

from overlay_chat.types import ChatEvent, EventType

_logger = logging.getLogger(__name__)

# Subscribing to this topic receives every event
WILDCARD = "*"

# Sync or async callable taking a ChatEvent
Handler = Callable[[ChatEvent], Any]


def _topic(event_type: EventType | str) -> str:
    return event_type.value if isinstance(event_type, EventType) else str(event_type)


class EventBus:
    """Fan-out of ``ChatEvent`` objects to UI subscribers.

    Handlers may be plain functions or coroutines.  All handlers for an
    event run concurrently; one that raises is logged and the rest still
    see the event.  The last ``max_history`` events are kept for
    inspection.
    """

    def __init__(self, max_history: int = 200) -> None:
        self._subscribers: dict[str, list[Handler]] = {}
        self._recent: deque[ChatEvent] = deque(maxlen=max_history)

    def subscribe(self, event_type: EventType | str, handler: Handler) -> None:
        """Call *handler* for every *event_type* event (``"*"``: all events)."""
        self._subscribers.setdefault(_topic(event_type), []).append(handler)

    def unsubscribe(self, event_type: EventType | str, handler: Handler) -> None:
        subscribers = self._subscribers.get(_topic(event_type))
        if subscribers and handler in subscribers:
            subscribers.remove(handler)

    async def emit(self, event: ChatEvent) -> None:
        self._recent.append(event)
        targets = [
            *self._subscribers.get(_topic(event.type), []),
            *self._subscribers.get(WILDCARD, []),
        ]
        if targets:
            await asyncio.gather(*(self._deliver(h, event) for h in targets))

    async def publish(self, event_type: EventType, **data: Any) -> None:
        """Build a ``ChatEvent`` from keyword data and emit it."""
        await self.emit(ChatEvent(type=event_type, data=data))

    @property
    def history(self) -> list[ChatEvent]:
        return list(self._recent)

    def clear(self) -> None:
        """Drop all subscribers and the recorded history."""
        self._subscribers.clear()
        self._recent.clear()

    @staticmethod
    async def _deliver(handler: Handler, event: ChatEvent) -> None:
        try:
            outcome = handler(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            name = getattr(handler, "__qualname__", repr(handler))
            _logger.exception("Subscriber %s failed on %s", name, _topic(event.type))
