"""Tests for the Orchestrator turn loop against a scripted server."""

import json

import httpx
import pytest

from overlay_chat.config import StreamLimits
from overlay_chat.core.executor import DELEGATED_PAYLOAD
from overlay_chat.core.orchestrator import (
    NO_THINK_DIRECTIVE,
    NO_THINK_REMINDER,
    Orchestrator,
    build_base_messages,
)
from overlay_chat.events.bus import EventBus
from overlay_chat.llm.client import AsyncCompletionClient
from overlay_chat.tools.registry import ToolRegistry
from overlay_chat.types import EventType

from .helpers import DONE, FakeServer, delta_line, tool_call_chunks


@pytest.fixture
def registry():
    reg = ToolRegistry()
    reg.register_function(
        "get_weather",
        lambda args: {"city": args["city"], "forecast": "sunny"},
        "Weather forecast for a city",
    )
    return reg


@pytest.fixture
def bus():
    return EventBus()


def make_orchestrator(server, registry, sink, config, bus):
    client = AsyncCompletionClient(config.api, transport=server.transport)
    return Orchestrator(client, registry, sink, config, bus)


def event_types(bus):
    return [e.type for e in bus.history]


class TestPlainTurn:
    async def test_answer_streams_to_sink(self, registry, sink, config, bus):
        server = FakeServer([[
            delta_line(content="<think>user greets</think>"),
            delta_line(content="Hi "),
            delta_line(content="there"),
            DONE,
        ]])
        orch = make_orchestrator(server, registry, sink, config, bus)
        result = await orch.run("hello")

        assert result.ok
        assert result.text == "Hi there"
        assert result.reasoning == "user greets"
        assert result.depth == 0
        assert sink.texts == ["Hi there"]
        assert len(server.requests) == 1

        body = server.requests[0]
        assert body["messages"] == [{"role": "user", "content": "hello"}]
        assert body["temperature"] == 0.2
        assert body["stream"] is True
        assert [t["function"]["name"] for t in body["tools"]] == ["get_weather"]

        types = event_types(bus)
        assert types[0] == EventType.TURN_STARTED
        assert types[-1] == EventType.TURN_DONE
        assert EventType.THINKING_STARTED in types

    async def test_no_think_messages(self, registry, sink, config, bus):
        config.no_think = True
        server = FakeServer([[delta_line(content="ok"), DONE]])
        orch = make_orchestrator(server, registry, sink, config, bus)
        await orch.run("hello")
        assert server.requests[0]["messages"] == [
            {"role": "system", "content": NO_THINK_DIRECTIVE},
            {"role": "user", "content": "hello" + NO_THINK_REMINDER},
        ]

    async def test_debug_mode_shows_raw_tags(self, registry, sink, config, bus):
        config.debug_mode = True
        server = FakeServer([[delta_line(content="<think>r</think>answer"), DONE]])
        orch = make_orchestrator(server, registry, sink, config, bus)
        result = await orch.run("hello")
        assert sink.texts == ["<think>r</think>answer"]
        assert result.reasoning == ""

    async def test_malformed_lines_do_not_abort(self, registry, sink, config, bus):
        server = FakeServer([[
            delta_line(content="a"),
            b"data: {oops\n\n",
            delta_line(content="b"),
            DONE,
        ]])
        orch = make_orchestrator(server, registry, sink, config, bus)
        result = await orch.run("hello")
        assert result.ok
        assert sink.texts == ["ab"]


class TestToolContinuation:
    async def test_single_tool_round(self, registry, sink, config, bus):
        server = FakeServer([
            tool_call_chunks("get_weather", '{"city": "Tokyo"}'),
            [delta_line(content="Sunny in Tokyo."), DONE],
        ])
        orch = make_orchestrator(server, registry, sink, config, bus)
        result = await orch.run("weather in Tokyo?")

        assert result.ok
        assert result.depth == 1
        assert result.text == "Sunny in Tokyo."
        assert sink.texts == ["Sunny in Tokyo."]
        assert len(server.requests) == 2

        continuation = server.requests[1]
        messages = continuation["messages"]
        assert messages[0] == {"role": "user", "content": "weather in Tokyo?"}
        assistant = [m for m in messages if m["role"] == "assistant"]
        tool_msgs = [m for m in messages if m["role"] == "tool"]
        assert len(assistant) == 1
        assert len(tool_msgs) == 1
        assert assistant[0]["content"] is None
        assert assistant[0]["tool_calls"] == [{
            "id": "call_1",
            "type": "function",
            "function": {"name": "get_weather", "arguments": '{"city": "Tokyo"}'},
        }]
        assert tool_msgs[0]["tool_call_id"] == "call_1"
        assert tool_msgs[0]["name"] == "get_weather"
        assert json.loads(tool_msgs[0]["content"]) == {"city": "Tokyo", "forecast": "sunny"}

        assert continuation["temperature"] == server.requests[0]["temperature"]
        assert continuation["tools"] == server.requests[0]["tools"]

    async def test_continuation_carries_only_latest_round(self, registry, sink, config, bus):
        server = FakeServer([
            tool_call_chunks("get_weather", '{"city": "Oslo"}', "c1"),
            tool_call_chunks("get_weather", '{"city": "Rome"}', "c2"),
            [delta_line(content="Done."), DONE],
        ])
        orch = make_orchestrator(server, registry, sink, config, bus)
        result = await orch.run("compare Oslo and Rome")
        assert result.depth == 2
        assert len(result.tool_results) == 2

        messages = server.requests[2]["messages"]
        assert [m["role"] for m in messages] == ["user", "assistant", "tool"]
        assert messages[0] == {"role": "user", "content": "compare Oslo and Rome"}
        assert [tc["id"] for tc in messages[1]["tool_calls"]] == ["c2"]
        assert messages[2]["tool_call_id"] == "c2"
        assert "Rome" in messages[2]["content"]

    async def test_continuation_keeps_no_think_directive(self, registry, sink, config, bus):
        config.no_think = True
        server = FakeServer([
            tool_call_chunks("get_weather", '{"city": "Oslo"}', "c1"),
            tool_call_chunks("get_weather", '{"city": "Rome"}', "c2"),
            [delta_line(content="Done."), DONE],
        ])
        orch = make_orchestrator(server, registry, sink, config, bus)
        await orch.run("compare")
        roles = [m["role"] for m in server.requests[2]["messages"]]
        assert roles == ["system", "user", "assistant", "tool"]

    async def test_unknown_tool_is_delegated(self, registry, sink, config, bus):
        server = FakeServer([
            tool_call_chunks("web_search", '{"q": "news"}'),
            [delta_line(content="Here is the news."), DONE],
        ])
        orch = make_orchestrator(server, registry, sink, config, bus)
        result = await orch.run("any news?")
        assert result.ok
        tool_msg = server.requests[1]["messages"][-1]
        assert json.loads(tool_msg["content"]) == DELEGATED_PAYLOAD
        assert EventType.TOOL_DELEGATED in event_types(bus)

    async def test_tool_failure_goes_back_to_model(self, registry, sink, config, bus):
        server = FakeServer([
            tool_call_chunks("get_weather", "{}"),
            [delta_line(content="Which city?"), DONE],
        ])
        orch = make_orchestrator(server, registry, sink, config, bus)
        result = await orch.run("weather?")
        assert result.ok
        assert result.tool_results[0].is_error is True
        assert "error" in json.loads(server.requests[1]["messages"][-1]["content"])

    async def test_recursion_limit(self, registry, sink, config, bus):
        server = FakeServer([tool_call_chunks("get_weather", '{"city": "Lima"}')])
        orch = make_orchestrator(server, registry, sink, config, bus)
        result = await orch.run("loop forever")

        assert len(server.requests) == config.max_tool_depth + 1 == 6
        assert not result.ok
        assert result.depth == 5
        assert "recursion limit" in result.error
        assert sink.texts[-1].startswith("Error: Tool recursion limit")

        error_event = bus.history[-1]
        assert error_event.type == EventType.TURN_ERROR
        assert error_event.data["depth"] == 5

    async def test_recursion_limit_is_configurable(self, registry, sink, config, bus):
        config.max_tool_depth = 1
        server = FakeServer([tool_call_chunks("get_weather", '{"city": "Lima"}')])
        orch = make_orchestrator(server, registry, sink, config, bus)
        result = await orch.run("loop")
        assert len(server.requests) == 2
        assert not result.ok


class TestErrors:
    async def test_http_error_reported_through_sink(self, registry, sink, config, bus):
        server = FakeServer([httpx.Response(500)])
        orch = make_orchestrator(server, registry, sink, config, bus)
        result = await orch.run("hello")
        assert result.error == "Server error (500). Inference server unavailable"
        assert sink.texts == ["Error: Server error (500). Inference server unavailable"]
        assert sink.messages[-1].closed is True
        assert bus.history[-1].type == EventType.TURN_ERROR

    async def test_timeout(self, registry, sink, config, bus):
        config.api.request_timeout = 0.05
        server = FakeServer(
            [[delta_line(content="slow"), delta_line(content="er"), DONE]],
            delay=0.04,
        )
        orch = make_orchestrator(server, registry, sink, config, bus)
        result = await orch.run("hello")
        assert result.error == "Timeout: request exceeded 0.05 seconds"
        assert sink.texts[-1] == "Error: Timeout: request exceeded 0.05 seconds"

    async def test_size_limit_keeps_partial_output(self, registry, sink, config, bus):
        config.limits = StreamLimits(max_response_size=10)
        server = FakeServer([[
            delta_line(content="partial"),
            delta_line(content=" and far too much"),
            DONE,
        ]])
        orch = make_orchestrator(server, registry, sink, config, bus)
        result = await orch.run("hello")
        assert result.error == "Response too large"
        assert sink.texts == ["partial", "Error: Response too large"]
        assert all(m.closed for m in sink.messages)

    async def test_abort_inside_reasoning_emits_thinking_ended(
        self, registry, sink, config, bus,
    ):
        config.limits = StreamLimits(max_thinking_size=4)
        server = FakeServer([[
            delta_line(content="<think>abc"),
            delta_line(content="defgh"),
            DONE,
        ]])
        orch = make_orchestrator(server, registry, sink, config, bus)
        await orch.run("hello")
        ended = [e for e in bus.history if e.type == EventType.THINKING_ENDED]
        assert ended[-1].data == {"aborted": True}


class TestBaseMessages:
    def test_plain(self):
        assert build_base_messages("hi", False) == [{"role": "user", "content": "hi"}]

    def test_no_think(self):
        messages = build_base_messages("hi", True)
        assert messages[0]["role"] == "system"
        assert messages[1]["content"].endswith("(Remember: Respond without <think> tags)")
