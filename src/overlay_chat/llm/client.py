"""Async client for the OpenAI-compatible endpoint of a local inference server.

Only two calls are made: a streamed ``POST /v1/chat/completions`` and a
``GET /v1/models`` health probe.  There is no retry loop: a failed request
ends the turn and the user resends.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx

from overlay_chat.config import ApiSpec
from overlay_chat.errors import ConnectionFailed, RequestTimeout, UpstreamHttpError
from overlay_chat.llm.sse import iter_delta_events
from overlay_chat.types import DeltaEvent

_logger = logging.getLogger(__name__)

COMPLETIONS_PATH = "/v1/chat/completions"
MODELS_PATH = "/v1/models"


@dataclass
class CompletionRequest:
    """Everything sent in one completion call."""

    messages: list[dict[str, Any]]
    temperature: float = 0.7
    tools: list[dict[str, Any]] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "messages": self.messages,
            "temperature": self.temperature,
            "stream": True,
        }
        if self.tools:
            payload["tools"] = self.tools
            payload["tool_choice"] = "auto"
        return payload


def _error_detail(body: bytes) -> str:
    """Pull ``error.message`` out of an error body if there is one."""
    try:
        data = json.loads(body)
    except ValueError:
        return body.decode(errors="replace").strip()[:200]
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
    return ""


class AsyncCompletionClient:
    """Streams chat completions from an OpenAI-compatible server.

    Parameters
    ----------
    api:
        Server location and request defaults.
    transport:
        Optional httpx transport, used by tests to stand in for the server.
    """

    def __init__(
        self,
        api: ApiSpec,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api = api
        self._client = httpx.AsyncClient(
            base_url=api.url,
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(api.request_timeout, connect=10),
            transport=transport,
        )

    async def stream_chat(self, request: CompletionRequest) -> AsyncIterator[DeltaEvent]:
        """Send *request* and yield its delta events as they arrive.

        Raises ``UpstreamHttpError`` for non-2xx answers, ``RequestTimeout``
        when httpx gives up waiting, and ``ConnectionFailed`` for transport
        errors.
        """
        payload = request.to_payload()
        _logger.debug(
            "POST %s (%d messages, %d tools)",
            COMPLETIONS_PATH, len(request.messages), len(request.tools),
        )
        try:
            async with self._client.stream(
                "POST", COMPLETIONS_PATH, json=payload,
            ) as resp:
                if not resp.is_success:
                    body = await resp.aread()
                    detail = _error_detail(body)
                    _logger.warning(
                        "Completion request failed with %d: %s",
                        resp.status_code, detail,
                    )
                    raise UpstreamHttpError(resp.status_code, detail)

                async for event in iter_delta_events(resp.aiter_bytes()):
                    yield event
        except httpx.TimeoutException as e:
            _logger.warning("Completion request timed out: %s", e)
            raise RequestTimeout(self.api.request_timeout) from e
        except httpx.TransportError as e:
            _logger.warning("Completion request transport error: %s", e)
            raise ConnectionFailed(str(e) or type(e).__name__) from e

    async def check_health(self) -> bool:
        """Return True when ``GET /v1/models`` answers with a 2xx status."""
        try:
            resp = await self._client.get(MODELS_PATH)
        except httpx.HTTPError as e:
            _logger.info("Health check failed: %s", e)
            return False
        if resp.is_success:
            return True
        _logger.info("Health check returned %d", resp.status_code)
        return False

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
