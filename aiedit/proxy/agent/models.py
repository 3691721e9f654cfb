from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

logger = logging.getLogger("aiedit.agent")

TRUNCATION_NOTE = "\n...[truncated from {length} chars]"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: TokenUsage | None) -> TokenUsage:
        if other is None:
            return self
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_creation_tokens=self.cache_creation_tokens + other.cache_creation_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cache_creation_tokens": self.cache_creation_tokens,
            "cache_read_tokens": self.cache_read_tokens,
        }

    def __str__(self) -> str:
        return f"{self.input_tokens} in / {self.output_tokens} out"


@dataclass(frozen=True)
class ToolCallRequest:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass(frozen=True)
class ToolCallResult:
    tool_call_id: str
    content: str
    is_error: bool = False

    @classmethod
    def success(cls, tool_call_id: str, content: str) -> ToolCallResult:
        return cls(tool_call_id, content, False)

    @classmethod
    def error(cls, tool_call_id: str, content: str) -> ToolCallResult:
        return cls(tool_call_id, content, True)

    def truncated(self, max_len: int) -> ToolCallResult:
        """Return a copy whose content fits in ``max_len`` chars, noting the original length."""
        content = self.content or ""
        if len(content) <= max_len:
            return self
        note = TRUNCATION_NOTE.format(length=len(content))
        keep = max(0, max_len - len(note))
        shortened = (content[:keep] + note)[:max_len]
        return replace(self, content=shortened)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_call_id": self.tool_call_id,
            "content": self.content,
            "is_error": self.is_error,
        }


@dataclass(frozen=True)
class ToolDefinition:
    """Static catalogue entry describing one tool the model may call."""

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "parameters": self.parameters}


@dataclass(frozen=True)
class Turn:
    """One conversation entry.

    USER turns carry only text, TOOL turns carry only tool results and
    only ASSISTANT turns may carry tool calls. Turns are never mutated;
    compaction builds a copy.
    """

    role: Role
    text: str | None = None
    tool_calls: tuple[ToolCallRequest, ...] = ()
    tool_results: tuple[ToolCallResult, ...] = ()
    usage: TokenUsage | None = None

    def __post_init__(self) -> None:
        # Accept lists from callers but store tuples
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))
        if not isinstance(self.tool_results, tuple):
            object.__setattr__(self, "tool_results", tuple(self.tool_results))

        if self.role is Role.USER and (self.tool_calls or self.tool_results):
            raise ValueError("USER turns may only carry text")
        if self.role is Role.TOOL and (self.text is not None or self.tool_calls):
            raise ValueError("TOOL turns may only carry tool results")
        if self.role is Role.ASSISTANT and self.tool_results:
            raise ValueError("ASSISTANT turns may not carry tool results")

    @classmethod
    def user(cls, text: str) -> Turn:
        return cls(Role.USER, text=text)

    @classmethod
    def assistant(
        cls,
        text: str | None,
        tool_calls: list[ToolCallRequest] | tuple[ToolCallRequest, ...] = (),
        usage: TokenUsage | None = None,
    ) -> Turn:
        return cls(Role.ASSISTANT, text=text, tool_calls=tuple(tool_calls), usage=usage)

    @classmethod
    def tool_results_turn(cls, results: list[ToolCallResult] | tuple[ToolCallResult, ...]) -> Turn:
        return cls(Role.TOOL, tool_results=tuple(results))

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def with_truncated_tool_results(self, max_len: int) -> Turn:
        if not any(len(r.content or "") > max_len for r in self.tool_results):
            return self
        return replace(self, tool_results=tuple(r.truncated(max_len) for r in self.tool_results))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role.value}
        if self.text is not None:
            data["text"] = self.text
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_results:
            data["tool_results"] = [tr.to_dict() for tr in self.tool_results]
        if self.usage is not None:
            data["usage"] = self.usage.to_dict()
        return data

    def __str__(self) -> str:
        preview = (self.text or "")[:60]
        return (
            f"Turn(role={self.role.value}, text={preview!r}, "
            f"tool_calls={len(self.tool_calls)}, tool_results={len(self.tool_results)})"
        )


@dataclass
class AgentEvent:
    type: str  # "text", "tool_start", "tool_end", "round_complete", "done", "error"
    data: dict[str, Any] = field(default_factory=dict)


class RunState(str, Enum):
    COMPLETE = "complete"
    ERROR = "error"


class FailureReason(str, Enum):
    GATEWAY_ERROR = "gateway_error"
    CANCELLED = "cancelled"
    BUDGET_EXCEEDED = "budget_exceeded"
    ROUND_LIMIT = "round_limit"
    INTERNAL = "internal"


@dataclass
class RunResult:
    state: RunState
    final_turn: Turn | None = None
    reason: FailureReason | None = None
    message: str = ""
    rounds: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)

    @property
    def ok(self) -> bool:
        return self.state is RunState.COMPLETE
