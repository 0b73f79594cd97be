"""Tests for the async EventBus."""

import pytest

from overlay_chat.events.bus import WILDCARD, EventBus
from overlay_chat.types import ChatEvent, EventType


@pytest.fixture
def bus():
    return EventBus()


class TestSubscribeAndEmit:
    async def test_async_handler(self, bus: EventBus):
        received = []

        async def handler(event: ChatEvent):
            received.append(event)

        bus.subscribe(EventType.TURN_STARTED, handler)
        ev = ChatEvent(type=EventType.TURN_STARTED, data={"text": "hi"})
        await bus.emit(ev)

        assert received == [ev]

    async def test_sync_handler(self, bus: EventBus):
        received = []
        bus.subscribe(EventType.TOOL_EXECUTED, received.append)
        await bus.publish(EventType.TOOL_EXECUTED, tool="echo")

        assert len(received) == 1
        assert received[0].data == {"tool": "echo"}

    async def test_no_cross_delivery(self, bus: EventBus):
        received = []
        bus.subscribe(EventType.TURN_STARTED, received.append)
        await bus.publish(EventType.TURN_DONE)
        assert received == []

    async def test_wildcard_receives_everything(self, bus: EventBus):
        received = []
        bus.subscribe(WILDCARD, received.append)
        await bus.publish(EventType.QUEUE_UPDATED, entries=[])
        await bus.publish(EventType.HEALTH_CHANGED, connected=True)
        assert [e.type for e in received] == [
            EventType.QUEUE_UPDATED, EventType.HEALTH_CHANGED,
        ]

    async def test_string_key_matches_enum(self, bus: EventBus):
        received = []
        bus.subscribe("turn.error", received.append)
        await bus.publish(EventType.TURN_ERROR, error="x")
        assert len(received) == 1

    async def test_unsubscribe(self, bus: EventBus):
        received = []
        bus.subscribe(EventType.TURN_DONE, received.append)
        bus.unsubscribe(EventType.TURN_DONE, received.append)
        await bus.publish(EventType.TURN_DONE)
        assert received == []


class TestErrorIsolation:
    async def test_failing_handler_does_not_block_others(self, bus: EventBus):
        received = []

        def broken(event):
            raise ValueError("handler bug")

        bus.subscribe(EventType.TURN_DONE, broken)
        bus.subscribe(EventType.TURN_DONE, received.append)
        await bus.publish(EventType.TURN_DONE)
        assert len(received) == 1


class TestHistory:
    async def test_history_bounded(self):
        bus = EventBus(max_history=3)
        for i in range(5):
            await bus.publish(EventType.QUEUE_COUNTDOWN, remaining_ms=i)
        assert [e.data["remaining_ms"] for e in bus.history] == [2, 3, 4]

    async def test_clear(self, bus: EventBus):
        bus.subscribe(WILDCARD, lambda e: None)
        await bus.publish(EventType.TURN_DONE)
        bus.clear()
        assert bus.history == []
