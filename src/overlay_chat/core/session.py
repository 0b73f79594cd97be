"""StreamSession: state owned by exactly one streaming completion request."""

from __future__ import annotations

import logging
from typing import Any

from overlay_chat.config import StreamLimits
from overlay_chat.core.sink import Sink
from overlay_chat.events.bus import EventBus
from overlay_chat.llm.response_parser import (
    TEXT,
    THINKING_END,
    THINKING_START,
    ParserEvent,
    ThinkSegmentParser,
    ToolCallAccumulator,
)
from overlay_chat.types import DeltaEvent, EventType, StreamOutcome

_logger = logging.getLogger(__name__)


class StreamSession:
    """Routes one stream's deltas to the sink, the reasoning buffer and the
    tool-call accumulator.

    The visible message is opened lazily: only once some non-whitespace
    text has to be shown (any text at all when reasoning interpretation is
    off).  A continuation request gets a fresh session.
    """

    def __init__(
        self,
        sink: Sink,
        limits: StreamLimits | None = None,
        interpret_reasoning: bool = True,
        event_bus: EventBus | None = None,
    ) -> None:
        self.parser = ThinkSegmentParser(limits, enabled=interpret_reasoning)
        self.tool_calls = ToolCallAccumulator()
        self.handle: Any = None
        self._sink = sink
        self._bus = event_bus
        self._visible = ""
        self._done = False

    @property
    def inside_reasoning(self) -> bool:
        return self.parser.inside

    @property
    def visible(self) -> str:
        return self._visible

    async def feed(self, event: DeltaEvent) -> None:
        """Consume one delta event."""
        if event.tool_calls:
            self.tool_calls.feed(event.tool_calls)
        if event.content:
            await self._apply(self.parser.feed(event.content))

    async def finish(self) -> StreamOutcome:
        """End of stream: flush held-back text and settle the visible message."""
        await self._apply(self.parser.finish())
        self._done = True

        outcome = StreamOutcome(
            visible=self._visible,
            reasoning=self.parser.reasoning,
            tool_calls=self.tool_calls.finalize(),
            response_length=self.parser.response_length,
            saw_reasoning=self.parser.saw_reasoning,
        )

        if self.handle is not None:
            if outcome.has_tool_calls and not self._visible.strip():
                # Nothing worth keeping before the tool round
                self._sink.discard(self.handle)
                self.handle = None
            else:
                self._sink.close(self.handle)

        _logger.info(
            "Stream complete: %d chars, think tags: %s, tool calls: %d",
            outcome.response_length, outcome.saw_reasoning, len(outcome.tool_calls),
        )
        return outcome

    async def abort(self) -> None:
        """Stop after an error.  Text already shown stays on screen."""
        if self._done:
            return
        self._done = True
        if self.parser.inside:
            self.parser.inside = False
            await self._emit(EventType.THINKING_ENDED, aborted=True)
        if self.handle is not None:
            self._sink.close(self.handle)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _apply(self, events: list[ParserEvent]) -> None:
        for kind, text in events:
            if kind == TEXT:
                self._show(text)
            elif kind == THINKING_START:
                await self._emit(EventType.THINKING_STARTED)
            elif kind == THINKING_END:
                await self._emit(
                    EventType.THINKING_ENDED,
                    reasoning_length=self.parser.reasoning_length,
                )

    def _show(self, text: str) -> None:
        self._visible += text
        if self.handle is None:
            if self.parser.enabled and not self._visible.strip():
                return
            self.handle = self._sink.open()
        self._sink.update(self.handle, self._visible)

    async def _emit(self, event_type: EventType, **data: Any) -> None:
        if self._bus:
            await self._bus.publish(event_type, **data)
