"""Tool interface: what the model can call and how it is described to it."""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from overlay_chat.types import ToolParameter


class Tool(ABC):
    """A tool executed in this process when the model calls it.

    Subclasses set ``name``, ``description`` and ``parameters`` as class
    attributes and implement ``execute()``.  The return value must be
    JSON-serializable; raising is allowed and is reported back to the model.
    """

    name: str
    description: str
    parameters: list[ToolParameter] = []

    @abstractmethod
    async def execute(self, arguments: dict[str, Any]) -> Any:
        """Run the tool with the parsed JSON arguments of a tool call."""

    def to_openai_schema(self) -> dict[str, Any]:
        """Function definition sent in the request's ``tools`` list."""
        params = {
            "type": "object",
            "properties": {p.name: p.json_schema() for p in self.parameters},
            "required": [p.name for p in self.parameters if p.required],
        }
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": params,
            },
        }


ToolFunction = Callable[[dict[str, Any]], "Awaitable[Any] | Any"]


class FunctionTool(Tool):
    """Adapts a plain (sync or async) function to the ``Tool`` interface."""

    def __init__(
        self,
        name: str,
        func: ToolFunction,
        description: str = "",
        parameters: list[ToolParameter] | None = None,
    ) -> None:
        self.name = name
        self.description = description or (inspect.getdoc(func) or "")
        self.parameters = list(parameters or [])
        self._func = func

    async def execute(self, arguments: dict[str, Any]) -> Any:
        result = self._func(arguments)
        if inspect.isawaitable(result):
            result = await result
        return result
