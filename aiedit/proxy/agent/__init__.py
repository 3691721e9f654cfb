"""Agent package.

Public API:
    from aiedit.proxy.agent import AgentLoop, LoopSettings, Conversation, SessionStore

Internal layout:
    models.py       — Turn, ToolCallRequest/Result, TokenUsage, AgentEvent, RunResult
    conversation.py — Conversation (windowing, tool-result compaction), SessionStore
    approval.py     — ApprovalRequest, ApprovalRegistry, CancellationToken
    tools.py        — Tool protocol, ToolRegistry, mutating allow-list
    tool_defs.py    — built-in backend tools, build_tool_registry()
    formatters.py   — exception results, backend fault compaction
    research.py     — ResearchTool (nested read-only AgentLoop)
    usage.py        — UsageTracker, RequestLogEntry
    loop.py         — AgentLoop (round state machine)
"""

from .models import (
    AgentEvent,
    FailureReason,
    Role,
    RunResult,
    RunState,
    TokenUsage,
    ToolCallRequest,
    ToolCallResult,
    ToolDefinition,
    Turn,
)
from .approval import ApprovalInterrupted, ApprovalRegistry, ApprovalRequest, CancellationToken, Decision
from .conversation import Conversation, SessionStore
from .tools import MUTATING_TOOLS, FunctionTool, ToolRegistry
from .loop import AgentLoop, LoopSettings
from .research import ResearchTool
from .tool_defs import build_tool_registry
from .usage import RequestLogEntry, UsageTracker

__all__ = [
    "AgentEvent",
    "AgentLoop",
    "ApprovalInterrupted",
    "ApprovalRegistry",
    "ApprovalRequest",
    "CancellationToken",
    "Conversation",
    "Decision",
    "FailureReason",
    "FunctionTool",
    "LoopSettings",
    "MUTATING_TOOLS",
    "RequestLogEntry",
    "ResearchTool",
    "Role",
    "RunResult",
    "RunState",
    "SessionStore",
    "TokenUsage",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolDefinition",
    "ToolRegistry",
    "Turn",
    "UsageTracker",
    "build_tool_registry",
]
