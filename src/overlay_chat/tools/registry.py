"""Name-keyed tool registry with plugin discovery."""

from __future__ import annotations

import logging
from importlib.metadata import entry_points
from typing import Any

from overlay_chat.errors import ToolExecutionError
from overlay_chat.tools.base import FunctionTool, Tool, ToolFunction
from overlay_chat.types import ToolParameter

_logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "overlay_chat.tools"


class ToolRegistry:
    """Local tools plus definitions of tools the server executes itself.

    Local tools run in-process when the model calls them.  Remote
    definitions are only advertised to the model; calls to them are
    delegated to whatever executes them on the server side.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}
        self._remote: dict[str, dict[str, Any]] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool instance (replacing one with the same name)."""
        if tool.name in self._tools:
            _logger.info("Replacing registered tool %s", tool.name)
        self._tools[tool.name] = tool

    def register_function(
        self,
        name: str,
        func: ToolFunction,
        description: str = "",
        parameters: list[ToolParameter] | None = None,
    ) -> Tool:
        """Wrap *func* in a ``FunctionTool`` and register it."""
        tool = FunctionTool(name, func, description, parameters)
        self.register(tool)
        return tool

    def add_remote_definition(self, definition: dict[str, Any]) -> None:
        """Advertise a tool executed outside this process."""
        name = (definition.get("function") or {}).get("name")
        if not name:
            raise ValueError("remote tool definition has no function.name")
        self._remote[name] = definition

    def get(self, name: str) -> Tool | None:
        """Look up a local tool by name."""
        return self._tools.get(name)

    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def remote_names(self) -> list[str]:
        return list(self._remote.keys())

    async def call(self, name: str, arguments: dict[str, Any]) -> Any:
        """Run local tool *name*.

        Raises ``KeyError`` for an unknown name and ``ToolExecutionError``
        wrapping whatever the tool raised.
        """
        tool = self._tools[name]
        try:
            return await tool.execute(arguments)
        except Exception as e:
            raise ToolExecutionError(name, e) from e

    def definitions(self) -> list[dict[str, Any]]:
        """OpenAI schemas for every local and remote tool, local first."""
        schemas = [t.to_openai_schema() for t in self._tools.values()]
        schemas.extend(
            d for name, d in self._remote.items() if name not in self._tools
        )
        return schemas

    def discover(self) -> None:
        """Load tools from the ``overlay_chat.tools`` entry-point group.

        Each entry point may be a Tool subclass, a Tool instance, or a
        callable returning a Tool.
        """
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                obj = ep.load()
                if isinstance(obj, type) and issubclass(obj, Tool):
                    tool = obj()
                elif isinstance(obj, Tool):
                    tool = obj
                elif callable(obj):
                    tool = obj()
                else:
                    _logger.warning(
                        "Entry point %s did not return a Tool: %s", ep.name, type(obj),
                    )
                    continue
                if not isinstance(tool, Tool):
                    _logger.warning(
                        "Entry point %s produced %s, not a Tool", ep.name, type(tool),
                    )
                    continue
                self.register(tool)
                _logger.info("Discovered plugin tool: %s", tool.name)
            except Exception:
                _logger.exception("Failed to load tool plugin: %s", ep.name)
