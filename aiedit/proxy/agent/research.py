"""``research`` tool: answer a question with a nested, read-only agent run."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .conversation import Conversation
from .loop import AgentLoop, LoopSettings
from .models import ToolCallResult, ToolDefinition
from .tools import Tool, ToolRegistry, is_mutating

if TYPE_CHECKING:
    from ..llm.gateway import LlmGateway

logger = logging.getLogger("aiedit.agent.research")

RESEARCH_TOOL_NAME = "research"

RESEARCH_SYSTEM_PROMPT = (
    "You are a research assistant working for another agent that edits source code. "
    "Use the available read-only tools to find the information requested, then give "
    "a clear, concise answer.\n\n"
    "Guidelines:\n"
    "- Read the relevant sources instead of guessing.\n"
    "- Say which object or URL each finding came from.\n"
    "- If a lookup finds nothing, try a different URL or name before giving up.\n"
    "- Summarize so the calling agent can act on the answer directly."
)


def _research_def() -> ToolDefinition:
    return ToolDefinition(
        name=RESEARCH_TOOL_NAME,
        description=(
            "Delegate a research question to a sub-agent that can read backend sources. "
            "Use it to understand existing code before changing it."
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "The question to investigate. Be specific about what you need.",
                },
            },
            "required": ["query"],
        },
    )


class ResearchTool:

    def __init__(
        self,
        gateway: LlmGateway,
        registry: ToolRegistry,
        max_rounds: int = 10,
        max_input_tokens: int = 20_000,
    ) -> None:
        self.name = RESEARCH_TOOL_NAME
        self.gateway = gateway
        self.registry = registry
        self.settings = LoopSettings(max_rounds=max_rounds, max_input_tokens=max_input_tokens)
        self._definition = _research_def()

    @property
    def definition(self) -> ToolDefinition:
        return self._definition

    def sub_registry(self) -> ToolRegistry:
        """Read-only tools of the parent registry, never including this tool."""
        return self.registry.subset(_is_research_safe)

    def execute(self, arguments: dict[str, Any]) -> ToolCallResult:
        query = arguments.get("query")
        if not isinstance(query, str) or not query.strip():
            return ToolCallResult.error("", "Missing required parameter 'query'.")

        conversation = Conversation(RESEARCH_SYSTEM_PROMPT)
        conversation.add_user_message(query)

        # No approval handler: the sub-agent only ever sees read-only tools
        loop = AgentLoop(self.gateway, self.sub_registry(), settings=self.settings)
        logger.info(f"Research sub-agent started: {query[:80]!r}")
        result = loop.run(conversation)

        if not result.ok:
            return ToolCallResult.error("", f"Research failed: {result.message}")
        text = result.final_turn.text if result.final_turn is not None else None
        if not text:
            return ToolCallResult.error("", "Research sub-agent produced no response.")
        logger.info(f"Research sub-agent finished after {result.rounds} round(s)")
        return ToolCallResult.success("", text)


def _is_research_safe(tool: Tool) -> bool:
    return tool.name != RESEARCH_TOOL_NAME and not is_mutating(tool.name)
