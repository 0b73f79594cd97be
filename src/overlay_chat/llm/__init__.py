"""Completion client and stream interpretation for Overlay Chat."""

from overlay_chat.llm.client import AsyncCompletionClient, CompletionRequest
from overlay_chat.llm.response_parser import (
    ThinkSegmentParser,
    ToolCallAccumulator,
    ToolCallDraft,
)
from overlay_chat.llm.sse import iter_delta_events

__all__ = [
    "AsyncCompletionClient",
    "CompletionRequest",
    "ThinkSegmentParser",
    "ToolCallAccumulator",
    "ToolCallDraft",
    "iter_delta_events",
]
