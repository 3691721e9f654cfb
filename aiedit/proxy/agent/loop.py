from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable
from urllib.parse import unquote, urlsplit

from ..llm.errors import LlmError
from .approval import ApprovalInterrupted, ApprovalRequest, CancellationToken, Decision
from .conversation import Conversation, DEFAULT_MAX_TURNS, DEFAULT_TOOL_RESULT_MAX_LEN
from .formatters import DEFAULT_ERROR_RESULT_MAX_LEN, compact_error_result, format_exception_result
from .models import (
    AgentEvent,
    FailureReason,
    RunResult,
    RunState,
    TokenUsage,
    ToolCallRequest,
    ToolCallResult,
    Turn,
)
from .tools import Tool, ToolRegistry, coerce_result, is_mutating

if TYPE_CHECKING:
    from ..backend import BackendClient
    from ..llm.gateway import LlmGateway

logger = logging.getLogger("aiedit.agent")

EventCallback = Callable[[AgentEvent], None]
# Called on the loop's thread; must hand the request off and return promptly.
ApprovalHandler = Callable[[ApprovalRequest], None]

REJECTED_MESSAGE = (
    "User rejected the proposed changes. The source was NOT modified. "
    "Ask the user what they would like instead."
)
NOT_EXECUTED_MESSAGE = "Tool call was not executed because the run was interrupted."

_SKIPPED_URL_SEGMENTS = {"source", "main"}


@dataclass(frozen=True)
class LoopSettings:
    max_rounds: int = 20
    max_input_tokens: int = 100_000
    max_turns: int = DEFAULT_MAX_TURNS
    tool_result_max_len: int = DEFAULT_TOOL_RESULT_MAX_LEN
    error_result_max_len: int = DEFAULT_ERROR_RESULT_MAX_LEN


def object_name_from_url(url: str) -> str:
    """``/programs/programs/zfoo/source/main`` -> ``ZFOO``."""
    path = urlsplit(url or "").path
    for segment in reversed(path.split("/")):
        if segment and segment not in _SKIPPED_URL_SEGMENTS:
            return unquote(segment).upper()
    return url or ""


class _Terminated(Exception):

    def __init__(self, reason: FailureReason, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.status_code = status_code


class AgentLoop:
    """Drive gateway rounds and tool dispatch until the model stops calling tools.

    ``run`` blocks its calling thread (the front end puts it on a worker) and
    never raises: every outcome is returned as a RunResult and also reported
    as a final ``done`` or ``error`` event.
    """

    def __init__(
        self,
        gateway: LlmGateway,
        tools: ToolRegistry,
        approval_handler: ApprovalHandler | None = None,
        backend: BackendClient | None = None,
        settings: LoopSettings | None = None,
    ) -> None:
        self.gateway = gateway
        self.tools = tools
        self.approval_handler = approval_handler
        self.backend = backend
        self.settings = settings or LoopSettings()

    def run(
        self,
        conversation: Conversation,
        on_event: EventCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> RunResult:
        token = cancel_token or CancellationToken()
        emit = on_event or (lambda event: None)
        usage = TokenUsage()
        rounds = 0

        try:
            while True:
                if token.cancelled:
                    raise _Terminated(FailureReason.CANCELLED, "Run cancelled by the user")
                if rounds >= self.settings.max_rounds:
                    raise _Terminated(
                        FailureReason.ROUND_LIMIT,
                        f"Stopped after {rounds} rounds without a final answer (possible tool-call loop)",
                    )

                conversation.window(self.settings.max_turns)
                conversation.compact_tool_results(self.settings.tool_result_max_len)

                rounds += 1
                reply, duration = self._send(conversation, token)
                usage = usage + reply.usage
                conversation.append(reply)
                logger.info(
                    f"Round {rounds}: {len(reply.tool_calls)} tool call(s), "
                    f"{reply.usage or TokenUsage()} in {duration:.2f}s"
                )

                if reply.text:
                    emit(AgentEvent("text", {"text": reply.text, "round": rounds}))

                if not reply.has_tool_calls:
                    self._emit_round(emit, rounds, reply, duration, usage, len(conversation))
                    emit(AgentEvent("done", {
                        "turn": reply.to_dict(),
                        "text": reply.text or "",
                        "rounds": rounds,
                        "usage": usage.to_dict(),
                    }))
                    return RunResult(RunState.COMPLETE, final_turn=reply, rounds=rounds, usage=usage)

                self._dispatch_round(conversation, reply.tool_calls, emit, token)
                self._emit_round(emit, rounds, reply, duration, usage, len(conversation))

                if usage.input_tokens > self.settings.max_input_tokens:
                    raise _Terminated(
                        FailureReason.BUDGET_EXCEEDED,
                        f"Token budget exceeded: {usage.input_tokens} input tokens used "
                        f"(limit {self.settings.max_input_tokens})",
                    )

        except _Terminated as t:
            return self._fail(emit, t.reason, t.message, rounds, usage, t.status_code)
        except ApprovalInterrupted:
            return self._fail(emit, FailureReason.CANCELLED, "Run cancelled while awaiting approval", rounds, usage)
        except Exception as e:
            logger.exception(f"Agent loop failed unexpectedly in round {rounds}")
            return self._fail(
                emit, FailureReason.INTERNAL, f"Internal error: {type(e).__name__} - {e}", rounds, usage
            )

    def _send(self, conversation: Conversation, token: CancellationToken) -> tuple[Turn, float]:
        started = time.monotonic()
        try:
            reply = self.gateway.send(conversation.turns, conversation.system_prompt, self.tools.definitions())
        except LlmError as e:
            if token.cancelled:
                raise _Terminated(FailureReason.CANCELLED, "Run cancelled by the user") from e
            raise _Terminated(FailureReason.GATEWAY_ERROR, e.message, e.status_code) from e
        return reply, time.monotonic() - started

    def _dispatch_round(
        self,
        conversation: Conversation,
        calls: tuple[ToolCallRequest, ...],
        emit: EventCallback,
        token: CancellationToken,
    ) -> None:
        results: list[ToolCallResult] = []
        try:
            for call in calls:
                results.append(self._dispatch(call, emit, token))
        finally:
            # Every issued call gets exactly one result, even when the round
            # is cut short, so the conversation stays sendable.
            for call in calls[len(results):]:
                results.append(ToolCallResult.error(call.id, NOT_EXECUTED_MESSAGE))
            conversation.append(Turn.tool_results_turn(results))

    def _dispatch(self, call: ToolCallRequest, emit: EventCallback, token: CancellationToken) -> ToolCallResult:
        emit(AgentEvent("tool_start", {"id": call.id, "name": call.name, "arguments": call.arguments}))

        tool = self.tools.get(call.name)
        if tool is None:
            logger.warning(f"Model requested unknown tool '{call.name}'")
            result = ToolCallResult.error(
                call.id, f"Unknown tool: '{call.name}'. Please use one of the available tools."
            )
        else:
            result = self._execute(tool, call, token)

        if result.is_error:
            result = compact_error_result(result, self.settings.error_result_max_len)

        emit(AgentEvent("tool_end", {
            "id": call.id,
            "name": call.name,
            "is_error": result.is_error,
            "content": result.content,
        }))
        return result

    def _execute(self, tool: Tool, call: ToolCallRequest, token: CancellationToken) -> ToolCallResult:
        arguments: dict[str, Any] = dict(call.arguments)

        handler = self.approval_handler
        if is_mutating(call.name) and handler is not None:
            request = self._approval_request(call)
            decision = self._await_approval(request, handler, token)
            if decision is Decision.REJECTED:
                return ToolCallResult.success(call.id, REJECTED_MESSAGE)
            if decision is Decision.EDITED:
                arguments["source"] = request.final_text

        try:
            return coerce_result(call.id, tool.execute(arguments))
        except Exception as e:
            logger.warning(f"Tool '{call.name}' failed: {type(e).__name__}: {e}")
            return format_exception_result(call.id, e)

    def _approval_request(self, call: ToolCallRequest) -> ApprovalRequest:
        url = str(call.arguments.get("url") or "")
        object_name = object_name_from_url(url) or str(call.arguments.get("name") or "unknown")
        before = self.backend.fetch_current_text(url) if self.backend is not None else ""
        after = call.arguments.get("source")
        return ApprovalRequest(
            tool_call_id=call.id,
            tool_name=call.name,
            object_name=object_name,
            resource_locator=url,
            before_text=before,
            after_text=after if isinstance(after, str) else "",
        )

    def _await_approval(
        self, request: ApprovalRequest, handler: ApprovalHandler, token: CancellationToken
    ) -> Decision:
        if token.cancelled:
            raise ApprovalInterrupted(f"Run cancelled before approval {request.id}")

        unregister = token.on_cancel(request.interrupt)
        try:
            logger.info(f"Awaiting approval {request.id} for {request.tool_name} on {request.object_name}")
            handler(request)
            return request.await_decision()
        finally:
            unregister()

    def _emit_round(
        self,
        emit: EventCallback,
        round_no: int,
        reply: Turn,
        duration: float,
        total: TokenUsage,
        message_count: int,
    ) -> None:
        emit(AgentEvent("round_complete", {
            "round": round_no,
            "provider": self.gateway.provider_id,
            "model": self.gateway.model,
            "duration": round(duration, 3),
            "usage": (reply.usage or TokenUsage()).to_dict(),
            "total_usage": total.to_dict(),
            "tools": [c.name for c in reply.tool_calls],
            "message_count": message_count,
        }))

    def _fail(
        self,
        emit: EventCallback,
        reason: FailureReason,
        message: str,
        rounds: int,
        usage: TokenUsage,
        status_code: int | None = None,
    ) -> RunResult:
        log = logger.warning if reason is FailureReason.CANCELLED else logger.error
        log(f"Agent run ended with {reason.value} after {rounds} round(s): {message}")
        try:
            emit(AgentEvent("error", {
                "reason": reason.value,
                "message": message,
                "status_code": status_code,
                "rounds": rounds,
            }))
        except Exception:
            logger.exception("Event callback failed while reporting the terminal error")
        return RunResult(RunState.ERROR, reason=reason, message=message, rounds=rounds, usage=usage)
