"""Tool system for Overlay Chat."""

from overlay_chat.tools.base import FunctionTool, Tool
from overlay_chat.tools.builtin import builtin_tools
from overlay_chat.tools.registry import ToolRegistry

__all__ = ["FunctionTool", "Tool", "ToolRegistry", "builtin_tools"]
