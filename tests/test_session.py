"""Tests for StreamSession: sink lifecycle and thinking events."""

import pytest

from overlay_chat.config import StreamLimits
from overlay_chat.core.session import StreamSession
from overlay_chat.core.sink import MemorySink
from overlay_chat.errors import ResponseTooLarge
from overlay_chat.events.bus import EventBus
from overlay_chat.types import DeltaEvent, EventType

CALL = [{"index": 0, "id": "call_1", "function": {"name": "f", "arguments": "{}"}}]


@pytest.fixture
def bus():
    return EventBus()


def text(content):
    return DeltaEvent(content=content)


class TestVisibleMessage:
    async def test_updates_carry_accumulated_text(self, sink, bus):
        session = StreamSession(sink, event_bus=bus)
        for fragment in ["Hello ", "<thi", "nk>reason", "ing</think> world"]:
            await session.feed(text(fragment))
        outcome = await session.finish()

        [msg] = sink.messages
        assert msg.updates == ["Hello ", "Hello  world"]
        assert msg.closed is True
        assert outcome.visible == "Hello  world"
        assert outcome.reasoning == "reasoning"
        assert outcome.saw_reasoning is True
        assert session.inside_reasoning is False

    async def test_message_opened_lazily_on_non_whitespace(self, sink):
        session = StreamSession(sink)
        await session.feed(text("<think>plan</think>"))
        await session.feed(text("\n\n"))
        assert sink.messages == []

        await session.feed(text("Answer"))
        assert sink.texts == ["\n\nAnswer"]

    async def test_reasoning_only_stream_opens_nothing(self, sink):
        session = StreamSession(sink)
        await session.feed(text("<think>just thinking</think>"))
        outcome = await session.finish()
        assert sink.messages == []
        assert outcome.visible == ""

    async def test_tool_only_stream_opens_nothing(self, sink):
        session = StreamSession(sink)
        await session.feed(DeltaEvent(tool_calls=CALL))
        outcome = await session.finish()
        assert sink.messages == []
        assert [c.name for c in outcome.tool_calls] == ["f"]

    async def test_mistyped_tool_fragment_tolerated(self, sink):
        session = StreamSession(sink)
        await session.feed(DeltaEvent(tool_calls=[{"index": 0, "id": 7, "function": "f"}]))
        await session.feed(DeltaEvent(tool_calls=CALL))
        outcome = await session.finish()
        assert [(c.id, c.name) for c in outcome.tool_calls] == [("call_1", "f")]

    async def test_raw_mode_opens_on_whitespace_and_discards_before_tools(self, sink):
        session = StreamSession(sink, interpret_reasoning=False)
        await session.feed(text("\n"))
        assert len(sink.messages) == 1
        await session.feed(DeltaEvent(tool_calls=CALL))
        outcome = await session.finish()

        assert outcome.has_tool_calls
        assert sink.discarded == {0}
        assert sink.texts == []

    async def test_raw_mode_shows_tags(self, sink):
        session = StreamSession(sink, interpret_reasoning=False)
        await session.feed(text("<think>r</think>ok"))
        await session.finish()
        assert sink.texts == ["<think>r</think>ok"]

    async def test_text_kept_when_tool_calls_follow_real_text(self, sink):
        session = StreamSession(sink)
        await session.feed(text("Let me check."))
        await session.feed(DeltaEvent(tool_calls=CALL))
        await session.finish()
        assert sink.texts == ["Let me check."]
        assert sink.discarded == set()


class TestThinkingEvents:
    async def test_started_and_ended(self, sink, bus):
        session = StreamSession(sink, event_bus=bus)
        await session.feed(text("<think>abc</think>x"))
        await session.finish()
        types = [e.type for e in bus.history]
        assert types == [EventType.THINKING_STARTED, EventType.THINKING_ENDED]
        assert bus.history[-1].data["reasoning_length"] == 3

    async def test_unterminated_block_ends_at_finish(self, sink, bus):
        session = StreamSession(sink, event_bus=bus)
        await session.feed(text("<think>abc"))
        outcome = await session.finish()
        assert bus.history[-1].type == EventType.THINKING_ENDED
        assert outcome.reasoning == "abc"


class TestAbort:
    async def test_abort_inside_reasoning(self, sink, bus):
        session = StreamSession(sink, event_bus=bus)
        await session.feed(text("Partial <think>hmm"))
        await session.abort()

        assert session.inside_reasoning is False
        assert bus.history[-1].type == EventType.THINKING_ENDED
        assert bus.history[-1].data == {"aborted": True}
        assert sink.texts == ["Partial "]
        assert sink.messages[0].closed is True

    async def test_abort_after_finish_is_noop(self, sink, bus):
        session = StreamSession(sink, event_bus=bus)
        await session.feed(text("done"))
        await session.finish()
        count = len(bus.history)
        await session.abort()
        assert len(bus.history) == count

    async def test_limit_error_keeps_shown_text(self):
        sink = MemorySink()
        session = StreamSession(sink, StreamLimits(max_response_size=8))
        await session.feed(text("visible"))
        with pytest.raises(ResponseTooLarge):
            await session.feed(text(" overflow"))
        await session.abort()
        assert sink.texts == ["visible"]
        assert sink.messages[0].closed is True
