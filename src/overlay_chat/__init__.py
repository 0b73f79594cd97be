"""Overlay Chat: streamed chat with tool calling against a local LLM server."""

from overlay_chat.app import ChatApp
from overlay_chat.config import ChatConfig, load_config

__version__ = "0.3.0"

__all__ = ["ChatApp", "ChatConfig", "__version__", "load_config"]
