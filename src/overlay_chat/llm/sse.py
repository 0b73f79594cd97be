"""Decode a chunked ``text/event-stream`` body into delta events.

Each network chunk is split into lines on its own.  A JSON payload that a
chunk boundary cuts in half fails to parse and is dropped like any other
malformed line; lines are not reassembled across chunks.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import AsyncIterable, AsyncIterator

from overlay_chat.types import DeltaEvent

_logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class _Done:
    """Marker returned by ``parse_data_line`` for the terminal sentinel."""


DONE = _Done()


def parse_data_line(line: str) -> DeltaEvent | _Done | None:
    """Parse one line.  ``None`` means "not an event, skip it"."""
    line = line.rstrip("\r")
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):]
    if payload.strip() == DONE_SENTINEL:
        return DONE

    try:
        data = json.loads(payload)
        delta = data["choices"][0].get("delta") or {}
        if not isinstance(delta, dict):
            raise TypeError(type(delta).__name__)
    except (ValueError, KeyError, IndexError, TypeError, AttributeError):
        _logger.debug("Skipping malformed stream line: %.80s", payload)
        return None

    content = delta.get("content")
    tool_calls = delta.get("tool_calls")
    if not isinstance(tool_calls, list):
        tool_calls = []
    return DeltaEvent(
        content=content if isinstance(content, str) else None,
        tool_calls=[tc for tc in tool_calls if isinstance(tc, dict)],
        raw=data,
    )


async def iter_delta_events(
    chunks: AsyncIterable[bytes],
) -> AsyncIterator[DeltaEvent]:
    """Yield one ``DeltaEvent`` per well-formed data line until ``[DONE]``."""
    # Incremental decoding keeps multi-byte characters intact across chunks
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    async for chunk in chunks:
        text = decoder.decode(chunk)
        for line in text.split("\n"):
            event = parse_data_line(line)
            if event is None:
                continue
            if event is DONE:
                return
            yield event

