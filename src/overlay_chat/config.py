"""Configuration for Overlay Chat.

Config discovery (first match wins):
  1. ``--config`` flag
  2. ``./overlay_chat.yaml``
  3. ``~/.config/overlay-chat/config.yaml``
  4. Built-in defaults
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

_logger = logging.getLogger(__name__)

_MIB = 1024 * 1024


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

@dataclass
class ApiSpec:
    """Where the local inference server lives and how to talk to it."""

    url: str = "http://localhost:1234"
    temperature: float = 0.7
    request_timeout: float = 30.0  # seconds, whole request including streaming

    def __post_init__(self) -> None:
        self.url = self.url.strip().rstrip("/")


@dataclass
class StreamLimits:
    """Hard ceilings on what a single completion stream may deliver."""

    max_buffer_size: int = 10 * _MIB
    max_response_size: int = 50 * _MIB
    max_thinking_size: int = 5 * _MIB


@dataclass
class QueueSpec:
    """Countdown applied to queued messages before they are sent."""

    countdown_ms: int = 500
    tick_ms: int = 50


@dataclass
class ChatConfig:
    """Top-level config for Overlay Chat."""

    api: ApiSpec = field(default_factory=ApiSpec)
    limits: StreamLimits = field(default_factory=StreamLimits)
    queue: QueueSpec = field(default_factory=QueueSpec)

    # Ask the model not to emit <think> blocks
    no_think: bool = False
    # Show raw output, <think> tags included
    debug_mode: bool = False

    max_tool_depth: int = 5
    min_message_length: int = 3
    max_message_length: int = 2000

    # OpenAI function definitions executed by the server side (e.g. MCP)
    remote_tools: list[dict[str, Any]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./overlay_chat.yaml"),
    Path.home() / ".config" / "overlay-chat" / "config.yaml",
]

USER_CONFIG_PATH = _SEARCH_PATHS[-1]


def _pick(cls: type, raw: dict[str, Any] | None) -> dict[str, Any]:
    """Keep only keys that are fields of dataclass *cls*."""
    if not raw:
        return {}
    unknown = set(raw) - set(cls.__dataclass_fields__)
    if unknown:
        _logger.warning(
            "Ignoring unknown %s keys: %s", cls.__name__, ", ".join(sorted(unknown)),
        )
    return {
        k: v for k, v in raw.items()
        if k in cls.__dataclass_fields__ and v is not None
    }


def parse_config(raw: dict[str, Any]) -> ChatConfig:
    """Build a ``ChatConfig`` from an already-parsed YAML mapping."""
    top = _pick(ChatConfig, raw)
    return ChatConfig(
        api=ApiSpec(**_pick(ApiSpec, top.pop("api", None))),
        limits=StreamLimits(**_pick(StreamLimits, top.pop("limits", None))),
        queue=QueueSpec(**_pick(QueueSpec, top.pop("queue", None))),
        **top,
    )


def find_config_file(path: str | Path | None = None) -> Path | None:
    """Return the config file that ``load_config`` would read, if any."""
    if path is not None:
        return Path(path) if Path(path).exists() else None
    for candidate in _SEARCH_PATHS:
        if candidate.exists():
            return candidate
    return None


def load_config(path: str | Path | None = None) -> ChatConfig:
    """Load configuration from YAML.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.

    Returns
    -------
    ChatConfig
    """
    config_path = find_config_file(path)

    if config_path is None:
        if path is not None:
            _logger.warning("Config file not found: %s, using defaults", path)
        else:
            _logger.info("No config file found, using defaults")
        return ChatConfig()

    _logger.info("Loading config from %s", config_path)
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    return parse_config(raw)


# Runtime settings that live under a section of the YAML file
_SETTING_SECTIONS = {"url": "api", "temperature": "api"}


def save_settings(changes: dict[str, Any], path: str | Path | None = None) -> Path:
    """Merge *changes* into the YAML file at *path* and return the path.

    Everything already in the file is kept and only the given keys are
    written, so command-line overrides never reach disk.  Without *path*
    the user config file is used.
    """
    target = Path(path) if path is not None else USER_CONFIG_PATH
    raw: dict[str, Any] = {}
    if target.exists():
        with open(target) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"{target} does not hold a YAML mapping")

    for key, value in changes.items():
        section = _SETTING_SECTIONS.get(key)
        if section is None:
            raw[key] = value
            continue
        node = raw.get(section)
        if not isinstance(node, dict):
            node = raw[section] = {}
        node[key] = value

    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w") as f:
        yaml.safe_dump(raw, f, sort_keys=False)
    _logger.info("Saved %s to %s", ", ".join(changes), target)
    return target
