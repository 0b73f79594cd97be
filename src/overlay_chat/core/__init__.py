"""Core chat engine components for Overlay Chat."""

from overlay_chat.core.dispatcher import QueuedDispatcher, QueueEntry
from overlay_chat.core.executor import Executor
from overlay_chat.core.orchestrator import Orchestrator, build_base_messages
from overlay_chat.core.session import StreamSession
from overlay_chat.core.sink import MemorySink, Sink, post_message

__all__ = [
    "Executor",
    "MemorySink",
    "Orchestrator",
    "QueueEntry",
    "QueuedDispatcher",
    "Sink",
    "StreamSession",
    "build_base_messages",
    "post_message",
]
