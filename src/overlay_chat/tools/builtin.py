"""Tools that ship with Overlay Chat."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from overlay_chat.tools.base import Tool
from overlay_chat.types import ToolParameter


class CurrentTimeTool(Tool):
    name = "current_time"
    description = "Get the current date and time, optionally in a given IANA time zone."
    parameters = [
        ToolParameter(
            name="timezone",
            type="string",
            description="IANA zone name such as 'Europe/Madrid'. Defaults to local time.",
            required=False,
        ),
    ]

    async def execute(self, arguments: dict[str, Any]) -> Any:
        tz_name = arguments.get("timezone")
        if tz_name:
            try:
                now = datetime.now(ZoneInfo(tz_name))
            except ZoneInfoNotFoundError:
                raise ValueError(f"Unknown time zone: {tz_name}") from None
        else:
            now = datetime.now().astimezone()
        return {
            "iso": now.isoformat(timespec="seconds"),
            "weekday": now.strftime("%A"),
            "timezone": tz_name or str(now.tzinfo),
        }


def builtin_tools() -> list[Tool]:
    return [CurrentTimeTool()]
