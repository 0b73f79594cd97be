"""Helpers for streaming tests: SSE bodies and a scripted server."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx


DONE = b"data: [DONE]\n\n"


def delta_line(
    content: str | None = None,
    tool_calls: list[dict[str, Any]] | None = None,
) -> bytes:
    """One SSE ``data:`` line carrying a chat completion delta."""
    delta: dict[str, Any] = {}
    if content is not None:
        delta["content"] = content
    if tool_calls is not None:
        delta["tool_calls"] = tool_calls
    payload = {"choices": [{"index": 0, "delta": delta}]}
    return f"data: {json.dumps(payload)}\n\n".encode()


def tool_call_chunks(name: str, arguments: str, call_id: str = "call_1") -> list[bytes]:
    """A tool call spread over three chunks, all with index 0."""
    half = len(name) // 2
    return [
        delta_line(tool_calls=[{
            "index": 0, "id": call_id, "type": "function",
            "function": {"name": name[:half], "arguments": ""},
        }]),
        delta_line(tool_calls=[{"index": 0, "function": {"name": name[half:]}}]),
        delta_line(tool_calls=[{"index": 0, "function": {"arguments": arguments}}]),
        DONE,
    ]


class ChunkStream(httpx.AsyncByteStream):
    """Response body delivered as the given chunks, optionally slowly."""

    def __init__(self, chunks: list[bytes], delay: float = 0.0) -> None:
        self._chunks = chunks
        self._delay = delay

    async def __aiter__(self):
        for chunk in self._chunks:
            if self._delay:
                await asyncio.sleep(self._delay)
            yield chunk


class FakeServer:
    """Answers completion requests from a script, one entry per request.

    An entry is a list of body chunks or a ready ``httpx.Response``.  The
    last entry repeats once the script runs out.
    """

    def __init__(
        self,
        script: list[list[bytes] | httpx.Response],
        delay: float = 0.0,
        models_status: int = 200,
    ) -> None:
        self.script = script
        self.delay = delay
        self.models_status = models_status
        self.requests: list[dict[str, Any]] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/models":
            return httpx.Response(self.models_status, json={"data": []})
        self.requests.append(json.loads(request.content))
        entry = self.script[min(len(self.requests), len(self.script)) - 1]
        if isinstance(entry, httpx.Response):
            return entry
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            stream=ChunkStream(entry, self.delay),
        )


async def aiter_chunks(chunks: list[bytes]):
    for chunk in chunks:
        yield chunk

