"""What the agent loop knows about tools: a name, a definition, ``execute``.

Tools may return a ToolCallResult (the call id may be left empty, the loop
fills it in), or a mapping with ``content`` and ``is_error``. They may raise;
the loop turns any exception into an error result.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping, Protocol, Union

from .models import ToolCallResult, ToolDefinition

logger = logging.getLogger("aiedit.agent.tools")

# Write-capable tools; calls to these go through human approval when an
# approval handler is configured.
MUTATING_TOOLS = frozenset({"write_source", "create_source"})

ToolOutput = Union[ToolCallResult, Mapping[str, Any]]


def is_mutating(name: str) -> bool:
    return name in MUTATING_TOOLS


class Tool(Protocol):
    name: str

    @property
    def definition(self) -> ToolDefinition: ...

    def execute(self, arguments: dict[str, Any]) -> ToolOutput: ...


class FunctionTool:
    """Adapt a plain function ``fn(arguments) -> ToolOutput`` to the Tool protocol."""

    def __init__(self, definition: ToolDefinition, fn: Callable[[dict[str, Any]], ToolOutput]) -> None:
        self.name = definition.name
        self._definition = definition
        self._fn = fn

    @property
    def definition(self) -> ToolDefinition:
        return self._definition

    def execute(self, arguments: dict[str, Any]) -> ToolOutput:
        return self._fn(arguments)


class ToolRegistry:

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            logger.warning(f"Replacing already registered tool '{tool.name}'")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self) -> list[ToolDefinition]:
        return [tool.definition for tool in self._tools.values()]

    def subset(self, predicate: Callable[[Tool], bool]) -> ToolRegistry:
        return ToolRegistry(t for t in self._tools.values() if predicate(t))

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __repr__(self) -> str:
        return f"ToolRegistry(tools={self.names()})"


def coerce_result(tool_call_id: str, output: ToolOutput) -> ToolCallResult:
    """Normalize a tool's return value and stamp it with the request's call id.

    The id of the request always wins: a tool that returns an empty or
    different id gets rewrapped.
    """
    if isinstance(output, ToolCallResult):
        if output.tool_call_id == tool_call_id:
            return output
        return ToolCallResult(tool_call_id, output.content, output.is_error)
    if isinstance(output, Mapping):
        content = output.get("content")
        return ToolCallResult(
            tool_call_id,
            content if isinstance(content, str) else str(content if content is not None else ""),
            bool(output.get("is_error", False)),
        )
    raise TypeError(f"Tool returned unsupported result type {type(output).__name__}")
