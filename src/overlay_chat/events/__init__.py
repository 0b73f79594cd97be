"""Event bus for Overlay Chat."""

from overlay_chat.events.bus import WILDCARD, EventBus

__all__ = ["WILDCARD", "EventBus"]
