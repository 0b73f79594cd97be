"""Sink: the only way the chat engine puts assistant text on screen."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


class Sink(Protocol):
    """Display surface for assistant messages.

    ``open()`` creates an empty message and returns an opaque handle.
    ``update()`` replaces the message body with *text* (the accumulated
    visible text so far, not a delta).  ``close()`` marks the message final;
    ``discard()`` removes a message that should never have been shown.
    """

    def open(self) -> Any: ...

    def update(self, handle: Any, text: str) -> None: ...

    def close(self, handle: Any) -> None: ...

    def discard(self, handle: Any) -> None: ...


def post_message(sink: Sink, text: str) -> Any:
    """Show a complete one-shot assistant message."""
    handle = sink.open()
    sink.update(handle, text)
    sink.close(handle)
    return handle


@dataclass
class MemoryMessage:
    text: str = ""
    closed: bool = False
    updates: list[str] = field(default_factory=list)


class MemorySink:
    """Sink that keeps messages in a list; for headless use and tests."""

    def __init__(self) -> None:
        self.messages: list[MemoryMessage] = []
        self.discarded: set[int] = set()

    def open(self) -> int:
        self.messages.append(MemoryMessage())
        return len(self.messages) - 1

    def update(self, handle: int, text: str) -> None:
        msg = self.messages[handle]
        msg.text = text
        msg.updates.append(text)

    def close(self, handle: int) -> None:
        self.messages[handle].closed = True

    def discard(self, handle: int) -> None:
        self.discarded.add(handle)

    @property
    def texts(self) -> list[str]:
        """Bodies of all messages that were not discarded."""
        return [
            m.text for i, m in enumerate(self.messages) if i not in self.discarded
        ]
