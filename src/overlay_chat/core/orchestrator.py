"""Orchestrator: one user turn, from first request to final answer.

    request → stream → (tool calls?) → execute → continuation request → ...

Each turn starts from the user's message alone; no earlier turns are sent.
A continuation carries that message plus one assistant message with the
latest tool calls and their results, up to ``max_tool_depth``
continuations.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from typing import Any

from overlay_chat.config import ChatConfig
from overlay_chat.core.executor import Executor
from overlay_chat.core.session import StreamSession
from overlay_chat.core.sink import Sink, post_message
from overlay_chat.errors import ChatError, RequestTimeout, ToolRecursionLimitExceeded
from overlay_chat.events.bus import EventBus
from overlay_chat.llm.client import AsyncCompletionClient, CompletionRequest
from overlay_chat.tools.registry import ToolRegistry
from overlay_chat.types import EventType, StreamOutcome, TurnResult

_logger = logging.getLogger(__name__)

NO_THINK_DIRECTIVE = (
    "IMPORTANT: You must respond directly without using any <think> or </think> "
    "tags. Never show your reasoning process. Do not use thinking tags under any "
    "circumstances. Provide only the final answer."
)
NO_THINK_REMINDER = "\n\n(Remember: Respond without <think> tags)"


def build_base_messages(text: str, no_think: bool) -> list[dict[str, Any]]:
    """Messages every request of a turn starts with."""
    if no_think:
        return [
            {"role": "system", "content": NO_THINK_DIRECTIVE},
            {"role": "user", "content": text + NO_THINK_REMINDER},
        ]
    return [{"role": "user", "content": text}]


class Orchestrator:
    """Runs a turn and its tool continuations as a bounded loop.

    Parameters
    ----------
    client:
        Completion client used for every request of the turn.
    registry:
        Local tools and remote tool definitions.
    sink:
        Where assistant text (and turn errors) are displayed.
    config:
        Read once per turn; changes apply from the next turn on.
    event_bus:
        Receives lifecycle, thinking and tool events (optional).
    """

    def __init__(
        self,
        client: AsyncCompletionClient,
        registry: ToolRegistry,
        sink: Sink,
        config: ChatConfig,
        event_bus: EventBus | None = None,
    ) -> None:
        self._client = client
        self._registry = registry
        self._sink = sink
        self._config = config
        self._event_bus = event_bus or EventBus()
        self._executor = Executor(registry, self._event_bus)

    def use_client(self, client: AsyncCompletionClient) -> None:
        """Send future requests through *client* (after a URL change)."""
        self._client = client

    async def run(self, text: str) -> TurnResult:
        """Run one turn.  Errors are reported through the sink, not raised."""
        result = TurnResult()
        await self._emit(EventType.TURN_STARTED, {"text": text[:200]})
        try:
            await self._run_turn(text, result)
        except ChatError as e:
            _logger.warning("Turn failed: %s", e)
            result.error = e.user_message
        except Exception as e:
            _logger.exception("Unexpected error during turn")
            result.error = f"{type(e).__name__}: {e}"

        if result.error:
            post_message(self._sink, f"Error: {result.error}")
            await self._emit(EventType.TURN_ERROR, {
                "error": result.error,
                "depth": result.depth,
            })
        else:
            await self._emit(EventType.TURN_DONE, {
                "depth": result.depth,
                "tool_results": len(result.tool_results),
                "length": len(result.text),
            })
        return result

    async def _run_turn(self, text: str, result: TurnResult) -> None:
        config = self._config
        temperature = config.api.temperature
        tools = self._registry.definitions()
        interpret_reasoning = not config.debug_mode

        base = build_base_messages(text, config.no_think)
        messages = base
        depth = 0
        while True:
            request = CompletionRequest(
                messages=messages, temperature=temperature, tools=tools,
            )
            outcome = await self._stream_once(request, depth, interpret_reasoning)
            result.depth = depth
            if outcome.visible.strip():
                result.text = outcome.visible
            result.reasoning += outcome.reasoning

            if not outcome.has_tool_calls:
                return
            if depth >= config.max_tool_depth:
                raise ToolRecursionLimitExceeded(depth, config.max_tool_depth)

            tool_results = await self._executor.execute(outcome.tool_calls)
            result.tool_results.extend(tool_results)

            # Only the latest round goes back; earlier rounds are not resent
            messages = [
                *base,
                {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [tc.to_message_dict() for tc in outcome.tool_calls],
                },
                *(r.to_message() for r in tool_results),
            ]
            depth += 1

    async def _stream_once(
        self,
        request: CompletionRequest,
        depth: int,
        interpret_reasoning: bool,
    ) -> StreamOutcome:
        session = StreamSession(
            self._sink,
            self._config.limits,
            interpret_reasoning=interpret_reasoning,
            event_bus=self._event_bus,
        )
        timeout = self._config.api.request_timeout
        await self._emit(EventType.REQUEST_SENT, {
            "depth": depth,
            "messages": len(request.messages),
        })
        try:
            async with asyncio.timeout(timeout):
                async with aclosing(self._client.stream_chat(request)) as events:
                    async for event in events:
                        await session.feed(event)
                return await session.finish()
        except TimeoutError as e:
            _logger.warning("Request at depth %d timed out after %ss", depth, timeout)
            raise RequestTimeout(timeout) from e
        finally:
            await session.abort()

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        await self._event_bus.publish(event_type, **data)
