"""Shared fixtures."""

import pytest

from overlay_chat.config import ApiSpec, ChatConfig, QueueSpec
from overlay_chat.core.sink import MemorySink


@pytest.fixture
def sink():
    return MemorySink()


@pytest.fixture
def config():
    return ChatConfig(
        api=ApiSpec(url="http://llm.test", temperature=0.2, request_timeout=5),
        queue=QueueSpec(countdown_ms=20, tick_ms=5),
    )
