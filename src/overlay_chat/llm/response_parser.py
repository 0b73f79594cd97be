"""Incremental interpretation of streamed completion deltas.

Two independent accumulators live here:

* ``ThinkSegmentParser`` splits content fragments into visible text and
  reasoning text delimited by ``<think>`` / ``</think>``, with tags that may
  be cut anywhere by chunk boundaries.
* ``ToolCallAccumulator`` merges native ``tool_calls`` fragments keyed by
  their ``index`` into complete ``ToolCall`` records.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from overlay_chat.config import StreamLimits
from overlay_chat.llm.limits import try_append
from overlay_chat.types import ToolCall

_logger = logging.getLogger(__name__)

OPEN_TAG = "<think>"
CLOSE_TAG = "</think>"

# Parser output events: (kind, text)
TEXT = "text"
THINKING = "thinking"
THINKING_START = "thinking_start"
THINKING_END = "thinking_end"

ParserEvent = tuple[str, str]


def _partial_tag_length(text: str, tag: str) -> int:
    """Length of the longest suffix of *text* that is a proper prefix of *tag*."""
    for size in range(min(len(text), len(tag) - 1), 0, -1):
        if text.endswith(tag[:size]):
            return size
    return 0


# ---------------------------------------------------------------------------
# ThinkSegmentParser
# ---------------------------------------------------------------------------

class ThinkSegmentParser:
    """Two-state machine (outside / inside a think block) over content fragments.

    ``feed()`` returns the events produced by one fragment:

    ``("text", s)``
        visible text, in order
    ``("thinking_start", "")`` / ``("thinking_end", "")``
        an opening / closing tag was consumed
    ``("thinking", s)``
        reasoning text, in order

    Text that might be the start of a tag is held back until the next
    fragment (or ``finish()``) settles it, so a tag split across fragments
    classifies exactly like an unsplit one.  With ``enabled=False`` every
    fragment is passed through as visible text.
    """

    def __init__(self, limits: StreamLimits | None = None, enabled: bool = True) -> None:
        self.limits = limits or StreamLimits()
        self.enabled = enabled
        self.inside = False
        self.response_length = 0
        self.reasoning_length = 0
        self.saw_reasoning = False
        self._buffer = ""
        self._visible: list[str] = []
        self._reasoning: list[str] = []

    @property
    def buffer(self) -> str:
        """Characters received but not yet classified."""
        return self._buffer

    @property
    def visible(self) -> str:
        return "".join(self._visible)

    @property
    def reasoning(self) -> str:
        return "".join(self._reasoning)

    def feed(self, fragment: str) -> list[ParserEvent]:
        """Classify one content fragment.

        Raises ``ResponseTooLarge`` before anything from *fragment* is
        stored when a size ceiling would be crossed.
        """
        if not fragment:
            return []

        try_append(
            len(self._buffer), len(fragment),
            self.limits.max_buffer_size, "stream buffer",
        )
        self.response_length = try_append(
            self.response_length, len(fragment),
            self.limits.max_response_size, "response",
        )

        if not self.enabled:
            return [self._emit_text(fragment)]

        self._buffer += fragment
        return self._drain()

    def finish(self) -> list[ParserEvent]:
        """Flush whatever is held back.  An unterminated think block is closed."""
        events: list[ParserEvent] = []
        rest, self._buffer = self._buffer, ""
        if self.inside:
            if rest:
                events.append(self._emit_reasoning(rest))
            self.inside = False
            events.append((THINKING_END, ""))
            _logger.debug("Stream ended inside a think block; closed implicitly")
        elif rest:
            events.append(self._emit_text(rest))
        return events

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _drain(self) -> list[ParserEvent]:
        events: list[ParserEvent] = []
        while True:
            if not self.inside:
                idx = self._buffer.find(OPEN_TAG)
                if idx >= 0:
                    if idx > 0:
                        events.append(self._emit_text(self._buffer[:idx]))
                    self._buffer = self._buffer[idx + len(OPEN_TAG):]
                    self.inside = True
                    self.saw_reasoning = True
                    events.append((THINKING_START, ""))
                    continue
                held = _partial_tag_length(self._buffer, OPEN_TAG)
                ready = self._buffer[: len(self._buffer) - held]
                if ready:
                    events.append(self._emit_text(ready))
                self._buffer = self._buffer[len(ready):]
                return events

            idx = self._buffer.find(CLOSE_TAG)
            if idx >= 0:
                if idx > 0:
                    events.append(self._emit_reasoning(self._buffer[:idx]))
                self._buffer = self._buffer[idx + len(CLOSE_TAG):]
                self.inside = False
                events.append((THINKING_END, ""))
                continue
            held = _partial_tag_length(self._buffer, CLOSE_TAG)
            ready = self._buffer[: len(self._buffer) - held]
            if ready:
                events.append(self._emit_reasoning(ready))
            self._buffer = self._buffer[len(ready):]
            return events

    def _emit_text(self, text: str) -> ParserEvent:
        self._visible.append(text)
        return (TEXT, text)

    def _emit_reasoning(self, text: str) -> ParserEvent:
        self.reasoning_length = try_append(
            self.reasoning_length, len(text),
            self.limits.max_thinking_size, "thinking content",
        )
        self._reasoning.append(text)
        return (THINKING, text)


# ---------------------------------------------------------------------------
# ToolCallAccumulator
# ---------------------------------------------------------------------------

def _nonempty_str(value: Any) -> bool:
    return isinstance(value, str) and value != ""


@dataclass
class ToolCallDraft:
    """Mutable tool call under construction for one ``index``."""

    index: int
    id: str = ""
    name: str = ""
    arguments_json: str = ""
    type: str = "function"

    def to_tool_call(self) -> ToolCall:
        return ToolCall(
            index=self.index,
            id=self.id,
            name=self.name,
            arguments_json=self.arguments_json,
            type=self.type,
        )


class ToolCallAccumulator:
    """Accumulate native function-calling fragments from streaming deltas.

    OpenAI-compatible servers send each tool call as a run of fragments
    sharing an ``index``.  ``id``, ``function.name`` and
    ``function.arguments`` fragments are concatenated onto the draft for
    that index; fields missing from a fragment leave the draft untouched.
    """

    def __init__(self) -> None:
        self._drafts: dict[int, ToolCallDraft] = {}

    def feed(self, fragments: list[dict[str, Any]]) -> None:
        """Merge the ``tool_calls`` list of one delta.

        Fields of the wrong JSON type are ignored; the rest of the fragment
        still counts.
        """
        for frag in fragments:
            if not isinstance(frag, dict):
                continue
            idx = frag.get("index")
            if not isinstance(idx, int) or isinstance(idx, bool):
                idx = 0
            draft = self._drafts.get(idx)
            if draft is None:
                draft = self._drafts[idx] = ToolCallDraft(index=idx)

            func = frag.get("function")
            if not isinstance(func, dict):
                func = {}
            if _nonempty_str(frag.get("id")):
                draft.id += frag["id"]
            if _nonempty_str(frag.get("type")):
                draft.type = frag["type"]
            if _nonempty_str(func.get("name")):
                draft.name += func["name"]
            if _nonempty_str(func.get("arguments")):
                draft.arguments_json += func["arguments"]

    def has_calls(self) -> bool:
        return bool(self._drafts)

    def draft(self, index: int) -> ToolCallDraft | None:
        return self._drafts.get(index)

    def finalize(self) -> list[ToolCall]:
        """Promote drafts to immutable ``ToolCall`` records, ordered by index."""
        calls: list[ToolCall] = []
        for idx in sorted(self._drafts):
            draft = self._drafts[idx]
            if not draft.name:
                _logger.warning("Dropping tool call %d without a name", idx)
                continue
            calls.append(draft.to_tool_call())
        return calls
