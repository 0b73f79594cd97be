"""Shared data types for Overlay Chat."""

from __future__ import annotations

import enum
import json
import time
from dataclasses import dataclass, field
from typing import Any


# ---------------------------------------------------------------------------
# Stream types
# ---------------------------------------------------------------------------

@dataclass
class DeltaEvent:
    """One parsed ``data:`` line of a streamed completion."""

    content: str | None = None
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Tool types
# ---------------------------------------------------------------------------

@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    type: str  # string, integer, number, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None

    def json_schema(self) -> dict[str, Any]:
        """JSON Schema fragment for this parameter."""
        schema: dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.default is not None:
            schema["default"] = self.default
        return schema


@dataclass(frozen=True)
class ToolCall:
    """A complete tool call, reassembled from streamed fragments."""

    index: int
    id: str
    name: str
    arguments_json: str = ""
    type: str = "function"

    def parse_arguments(self) -> dict[str, Any]:
        """Decode ``arguments_json``.  Empty arguments mean ``{}``.

        Raises ``ValueError`` when the accumulated text is not a JSON object.
        """
        if not self.arguments_json.strip():
            return {}
        args = json.loads(self.arguments_json)
        if not isinstance(args, dict):
            raise ValueError(
                f"arguments must be a JSON object, got {type(args).__name__}",
            )
        return args

    def to_message_dict(self) -> dict[str, Any]:
        """OpenAI wire format used inside an assistant ``tool_calls`` list."""
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.name, "arguments": self.arguments_json},
        }


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool call, forwarded verbatim to the next request."""

    tool_call_id: str
    name: str
    content_json: str
    is_error: bool = False

    def to_message(self) -> dict[str, Any]:
        return {
            "tool_call_id": self.tool_call_id,
            "role": "tool",
            "name": self.name,
            "content": self.content_json,
        }


# ---------------------------------------------------------------------------
# Turn types
# ---------------------------------------------------------------------------

@dataclass
class StreamOutcome:
    """What one completion stream produced once it ended."""

    visible: str = ""
    reasoning: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    response_length: int = 0
    saw_reasoning: bool = False

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


@dataclass
class TurnResult:
    """Summary of one user turn, including every tool continuation."""

    text: str = ""
    reasoning: str = ""
    tool_results: list[ToolResult] = field(default_factory=list)
    depth: int = 0
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Signals sent to the UI collaborator."""

    # Turn lifecycle
    TURN_STARTED = "turn.started"
    TURN_DONE = "turn.done"
    TURN_ERROR = "turn.error"

    # Streaming
    REQUEST_SENT = "llm.request"
    THINKING_STARTED = "llm.thinking.started"
    THINKING_ENDED = "llm.thinking.ended"

    # Tools
    TOOLS_EXECUTING = "tools.executing"
    TOOL_EXECUTED = "tool.executed"
    TOOL_ERROR = "tool.error"
    TOOL_DELEGATED = "tool.delegated"

    # Queue
    QUEUE_UPDATED = "queue.updated"
    QUEUE_COUNTDOWN = "queue.countdown"
    QUEUE_DISPATCHED = "queue.dispatched"

    # Connection indicator
    HEALTH_CHANGED = "health.changed"


@dataclass
class ChatEvent:
    """Event emitted through the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
