from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..backend import BackendClient
from .models import ToolCallResult, ToolDefinition
from .research import ResearchTool
from .tools import ToolRegistry

if TYPE_CHECKING:
    from ..llm.gateway import LlmGateway

logger = logging.getLogger("aiedit.agent.tools")


def _read_source_def() -> ToolDefinition:
    return ToolDefinition(
        name="read_source",
        description="Read the current source text of a backend object by URL.",
        parameters={
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "Object URL, absolute or relative to the backend base URL."},
            },
            "required": ["url"],
        },
    )


def _write_source_def() -> ToolDefinition:
    return ToolDefinition(
        name="write_source",
        description=(
            "Replace the full source text of an existing backend object. "
            "Always send the complete source, not a fragment. The user reviews the change first."
        ),
        parameters={
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "Object URL to overwrite."},
                "source": {"type": "string", "description": "Complete new source text."},
            },
            "required": ["url", "source"],
        },
    )


def _create_source_def() -> ToolDefinition:
    return ToolDefinition(
        name="create_source",
        description="Create a new backend object with the given source text. The user reviews the change first.",
        parameters={
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "URL of the object to create."},
                "source": {"type": "string", "description": "Initial source text."},
            },
            "required": ["url", "source"],
        },
    )


def _require(arguments: dict[str, Any], *names: str) -> str | None:
    missing = [n for n in names if not isinstance(arguments.get(n), str) or (n == "url" and not arguments[n].strip())]
    if missing:
        return f"Missing required parameter(s): {', '.join(repr(m) for m in missing)}."
    return None


class BackendTool:
    """Base for the built-in tools that talk to the backend resource."""

    def __init__(self, backend: BackendClient, definition: ToolDefinition) -> None:
        self.backend = backend
        self.name = definition.name
        self._definition = definition

    @property
    def definition(self) -> ToolDefinition:
        return self._definition


class ReadSourceTool(BackendTool):

    def __init__(self, backend: BackendClient) -> None:
        super().__init__(backend, _read_source_def())

    def execute(self, arguments: dict[str, Any]) -> ToolCallResult:
        problem = _require(arguments, "url")
        if problem:
            return ToolCallResult.error("", problem)
        url = arguments["url"]
        text = self.backend.fetch_text(url)
        if text is None:
            return ToolCallResult.error("", f"Object not found: {url}")
        return ToolCallResult.success("", text)


class WriteSourceTool(BackendTool):

    def __init__(self, backend: BackendClient) -> None:
        super().__init__(backend, _write_source_def())

    def execute(self, arguments: dict[str, Any]) -> ToolCallResult:
        problem = _require(arguments, "url", "source")
        if problem:
            return ToolCallResult.error("", problem)
        url, source = arguments["url"], arguments["source"]
        self.backend.write_text(url, source)
        logger.info(f"Wrote {len(source)} chars to {url}")
        return ToolCallResult.success("", f"Source of {url} updated ({len(source.splitlines())} lines).")


class CreateSourceTool(BackendTool):

    def __init__(self, backend: BackendClient) -> None:
        super().__init__(backend, _create_source_def())

    def execute(self, arguments: dict[str, Any]) -> ToolCallResult:
        problem = _require(arguments, "url", "source")
        if problem:
            return ToolCallResult.error("", problem)
        url, source = arguments["url"], arguments["source"]
        self.backend.create_text(url, source)
        logger.info(f"Created {url} ({len(source)} chars)")
        return ToolCallResult.success("", f"Created {url}.")


def backend_tools(backend: BackendClient) -> list[BackendTool]:
    return [ReadSourceTool(backend), WriteSourceTool(backend), CreateSourceTool(backend)]


def build_tool_registry(
    backend: BackendClient,
    gateway: LlmGateway | None = None,
    research_max_rounds: int = 10,
    research_max_input_tokens: int = 20_000,
) -> ToolRegistry:
    """Built-in backend tools, plus ``research`` when a gateway is given for it."""
    registry = ToolRegistry(backend_tools(backend))
    if gateway is not None:
        registry.register(ResearchTool(gateway, registry, research_max_rounds, research_max_input_tokens))
    return registry
