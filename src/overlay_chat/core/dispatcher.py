"""Queued dispatcher: admits one user message at a time.

Messages wait in a FIFO queue.  The head entry counts down (500 ms by
default, ticking every 50 ms) before it is sent, so the user can still
cancel it.  While a message is in flight nothing else is sent and no
countdown runs; when it finishes, however it finishes, the next entry
starts counting down.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from overlay_chat.config import QueueSpec
from overlay_chat.events.bus import EventBus
from overlay_chat.types import EventType

_logger = logging.getLogger(__name__)

SendFn = Callable[[str], Awaitable[Any]]


@dataclass
class QueueEntry:
    text: str
    remaining_ms: int


class QueuedDispatcher:
    """FIFO of pending messages in front of a single in-flight send.

    Parameters
    ----------
    send:
        Coroutine function that performs one turn for a message.
    spec:
        Countdown length and tick interval.
    event_bus:
        Receives queue updates and countdown ticks (optional).
    """

    def __init__(
        self,
        send: SendFn,
        spec: QueueSpec | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._send = send
        self._spec = spec or QueueSpec()
        self._event_bus = event_bus
        self._entries: list[QueueEntry] = []
        self._in_flight = False
        self._countdown: asyncio.Task[None] | None = None
        self._sending: asyncio.Task[Any] | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def counting_down(self) -> bool:
        return self._countdown is not None and not self._countdown.done()

    @property
    def entries(self) -> list[QueueEntry]:
        return list(self._entries)

    async def enqueue(self, text: str) -> None:
        """Queue *text* as-is.  Validation is the caller's job."""
        self._entries.append(QueueEntry(text, self._spec.countdown_ms))
        self._idle.clear()
        await self._queue_updated()
        self._schedule()

    async def cancel(self, index: int) -> QueueEntry:
        """Remove the entry at *index*; stops the countdown if it was the head."""
        entry = self._entries.pop(index)
        if index == 0 and self.counting_down:
            self._stop_countdown()
        await self._queue_updated()
        self._schedule()
        self._check_idle()
        return entry

    async def wait_idle(self) -> None:
        """Wait until the queue is empty and nothing is in flight."""
        await self._idle.wait()

    async def close(self) -> None:
        """Drop pending entries, stop the countdown and abandon any send."""
        self._entries.clear()
        tasks = [t for t in (self._countdown, self._sending) if t is not None]
        self._stop_countdown()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._check_idle()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _schedule(self) -> None:
        if self._in_flight or self.counting_down or not self._entries:
            return
        self._stop_countdown()
        self._countdown = asyncio.get_running_loop().create_task(self._run_countdown())

    def _stop_countdown(self) -> None:
        if self._countdown is not None:
            if not self._countdown.done():
                self._countdown.cancel()
            self._countdown = None

    async def _run_countdown(self) -> None:
        head = self._entries[0]
        total = self._spec.countdown_ms
        tick = max(1, self._spec.tick_ms)
        head.remaining_ms = total
        elapsed = 0
        while elapsed < total:
            await asyncio.sleep(tick / 1000)
            elapsed += tick
            head.remaining_ms = max(0, total - elapsed)
            await self._emit(EventType.QUEUE_COUNTDOWN, {
                "text": head.text,
                "remaining_ms": head.remaining_ms,
            })

        # In flight from here on, before any await
        self._countdown = None
        self._in_flight = True
        self._entries.pop(0)
        await self._dispatch(head.text)

    async def _dispatch(self, text: str) -> None:
        self._sending = asyncio.current_task()
        try:
            await self._queue_updated()
            await self._emit(EventType.QUEUE_DISPATCHED, {"text": text[:200]})
            await self._send(text)
        except Exception:
            _logger.exception("Send failed for queued message")
        finally:
            self._in_flight = False
            self._sending = None
            self._schedule()
            self._check_idle()

    def _check_idle(self) -> None:
        if not self._entries and not self._in_flight:
            self._idle.set()

    async def _queue_updated(self) -> None:
        await self._emit(EventType.QUEUE_UPDATED, {
            "entries": [(e.text, e.remaining_ms) for e in self._entries],
        })

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.publish(event_type, **data)
