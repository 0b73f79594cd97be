"""ChatApp: the single context object holding every long-lived component.

Constructed once at startup and closed on shutdown::

    async with ChatApp(config, sink) as app:
        await app.submit("What time is it in Tokyo?")
        await app.dispatcher.wait_idle()
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import httpx

from overlay_chat.config import USER_CONFIG_PATH, ApiSpec, ChatConfig, save_settings
from overlay_chat.core.dispatcher import QueuedDispatcher
from overlay_chat.core.orchestrator import Orchestrator
from overlay_chat.core.sink import Sink
from overlay_chat.events.bus import EventBus
from overlay_chat.llm.client import AsyncCompletionClient
from overlay_chat.tools.builtin import builtin_tools
from overlay_chat.tools.registry import ToolRegistry
from overlay_chat.types import EventType, TurnResult

_logger = logging.getLogger(__name__)

# Settings that may be changed at runtime, with their value types
SETTINGS: dict[str, type] = {
    "url": str,
    "temperature": float,
    "no_think": bool,
    "debug_mode": bool,
}


def build_registry(config: ChatConfig, discover: bool = True) -> ToolRegistry:
    """Built-in tools, entry-point plugins and configured remote tools."""
    registry = ToolRegistry()
    for tool in builtin_tools():
        registry.register(tool)
    if discover:
        registry.discover()
    for definition in config.remote_tools:
        try:
            registry.add_remote_definition(definition)
        except ValueError as e:
            _logger.warning("Skipping remote tool definition: %s", e)
    return registry


class ChatApp:
    """Wires config, client, tools, orchestrator and queue together.

    Parameters
    ----------
    config:
        Loaded configuration; runtime setting changes are written into it.
    sink:
        Display surface for assistant messages.
    event_bus:
        Shared bus for UI signals.  A new one is created if omitted.
    registry:
        Tool registry.  Built from *config* if omitted.
    transport:
        Optional httpx transport (tests use ``httpx.MockTransport``).
    config_path:
        File *config* was loaded from; setting changes are saved there.
        Defaults to the user config file.
    """

    def __init__(
        self,
        config: ChatConfig,
        sink: Sink,
        event_bus: EventBus | None = None,
        registry: ToolRegistry | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        config_path: Path | None = None,
    ) -> None:
        self.config = config
        self.config_path = config_path or USER_CONFIG_PATH
        self.sink = sink
        self.event_bus = event_bus or EventBus()
        self.registry = registry if registry is not None else build_registry(config)
        self._transport = transport
        self.client = AsyncCompletionClient(config.api, transport=transport)
        self.orchestrator = Orchestrator(
            self.client, self.registry, sink, config, self.event_bus,
        )
        self.dispatcher = QueuedDispatcher(self._send, config.queue, self.event_bus)
        self.connected: bool | None = None

    async def __aenter__(self) -> ChatApp:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def validate(self, text: str) -> str | None:
        """Return a reason to reject *text*, or None if it may be sent."""
        length = len(text.strip())
        if length < self.config.min_message_length:
            return (
                f"Message too short (minimum {self.config.min_message_length} characters)"
            )
        if length > self.config.max_message_length:
            return (
                f"Message too long (maximum {self.config.max_message_length} characters)"
            )
        return None

    async def submit(self, text: str) -> str | None:
        """Validate and queue *text*.  Returns the rejection reason, if any."""
        problem = self.validate(text)
        if problem:
            _logger.info("Rejected message: %s", problem)
            return problem
        await self.dispatcher.enqueue(text.strip())
        return None

    async def _send(self, text: str) -> TurnResult:
        return await self.orchestrator.run(text)

    # ------------------------------------------------------------------
    # Connection and settings
    # ------------------------------------------------------------------

    async def check_health(self) -> bool:
        """Probe the server and publish the connection state."""
        ok = await self.client.check_health()
        self.connected = ok
        await self.event_bus.publish(
            EventType.HEALTH_CHANGED,
            connected=ok,
            url=self.config.api.url,
            tools=len(self.registry.definitions()),
        )
        return ok

    async def update_setting(self, key: str, value: Any) -> None:
        """Change one runtime setting; takes effect from the next turn."""
        if key not in SETTINGS:
            raise KeyError(f"Unknown setting: {key}")

        if key == "url":
            if self.dispatcher.in_flight:
                raise RuntimeError("Cannot change the server URL during a request")
            api = self.config.api
            self.config.api = ApiSpec(
                url=value, temperature=api.temperature,
                request_timeout=api.request_timeout,
            )
            old = self.client
            self.client = AsyncCompletionClient(self.config.api, transport=self._transport)
            self.orchestrator.use_client(self.client)
            await old.close()
        elif key == "temperature":
            self.config.api.temperature = float(value)
        else:
            setattr(self.config, key, bool(value))
        _logger.info("Setting %s changed", key)

    def get_setting(self, key: str) -> Any:
        if key not in SETTINGS:
            raise KeyError(f"Unknown setting: {key}")
        if key in ("url", "temperature"):
            return getattr(self.config.api, key)
        return getattr(self.config, key)

    def save_setting(self, key: str) -> Path:
        """Write the current value of *key* to ``config_path``."""
        return save_settings({key: self.get_setting(key)}, self.config_path)

    async def close(self) -> None:
        await self.dispatcher.close()
        await self.client.close()
