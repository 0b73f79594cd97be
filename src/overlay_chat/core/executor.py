"""Executor: turns resolved tool calls into tool results.

Every call yields exactly one ``ToolResult``.  Failures of a single tool
become an ``{"error": ...}`` payload for the model to read; they never
abort the turn.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from overlay_chat.errors import ToolExecutionError
from overlay_chat.events.bus import EventBus
from overlay_chat.tools.registry import ToolRegistry
from overlay_chat.types import EventType, ToolCall, ToolResult

_logger = logging.getLogger(__name__)

DELEGATED_PAYLOAD = {
    "status": "delegated",
    "message": "Tool executed by the server-side tool host",
}


def _to_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


class Executor:
    """Runs tool calls sequentially, in the order the model issued them.

    Usage::

        executor = Executor(registry, event_bus)
        results = await executor.execute(tool_calls)
    """

    def __init__(self, registry: ToolRegistry, event_bus: EventBus | None = None) -> None:
        self._registry = registry
        self._event_bus = event_bus

    async def execute(self, tool_calls: list[ToolCall]) -> list[ToolResult]:
        await self._emit(EventType.TOOLS_EXECUTING, {
            "count": len(tool_calls),
            "tools": [tc.name for tc in tool_calls],
        })
        results = [await self._execute_one(tc) for tc in tool_calls]
        _logger.info("%d tool(s) executed", len(results))
        return results

    async def _execute_one(self, tc: ToolCall) -> ToolResult:
        if self._registry.get(tc.name) is None:
            _logger.info("Tool %s is not local; delegating to the server", tc.name)
            await self._emit(EventType.TOOL_DELEGATED, {"tool": tc.name})
            return ToolResult(
                tool_call_id=tc.id,
                name=tc.name,
                content_json=_to_json(DELEGATED_PAYLOAD),
            )

        try:
            try:
                arguments = tc.parse_arguments()
            except ValueError as e:
                raise ToolExecutionError(tc.name, f"invalid arguments: {e}") from e
            _logger.debug("Running tool %s with %s", tc.name, arguments)
            output = await self._registry.call(tc.name, arguments)
        except ToolExecutionError as e:
            _logger.warning("Tool %s failed: %s", tc.name, e)
            await self._emit(EventType.TOOL_ERROR, {"tool": tc.name, "error": str(e)})
            return ToolResult(
                tool_call_id=tc.id,
                name=tc.name,
                content_json=_to_json({"error": str(e)}),
                is_error=True,
            )

        content = _to_json(output)
        await self._emit(EventType.TOOL_EXECUTED, {
            "tool": tc.name,
            "output_length": len(content),
        })
        return ToolResult(tool_call_id=tc.id, name=tc.name, content_json=content)

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.publish(event_type, **data)
