"""Tests for the tool registry, built-in backend tools, research sub-agent and usage tracking."""

import pytest

from conftest import final_reply, make_gateway, recording_tool, tool_call_reply

from aiedit.proxy.agent import (
    AgentEvent,
    RequestLogEntry,
    ToolCallResult,
    ToolRegistry,
    UsageTracker,
    build_tool_registry,
)
from aiedit.proxy.agent.formatters import compact_error_result, extract_fault_message, format_exception_result
from aiedit.proxy.agent.research import RESEARCH_SYSTEM_PROMPT
from aiedit.proxy.agent.tools import coerce_result, is_mutating
from aiedit.proxy.backend import BackendError
from aiedit.proxy.llm import LlmError


# ═══════════════════════════════════════════════════════════════
# Registry and result coercion
# ═══════════════════════════════════════════════════════════════

class TestToolRegistry:

    def test_lookup_and_definitions(self):
        registry = ToolRegistry([recording_tool("a"), recording_tool("b")])
        assert registry.names() == ["a", "b"]
        assert "a" in registry
        assert "zzz" not in registry
        assert registry.get("zzz") is None
        assert [d.name for d in registry.definitions()] == ["a", "b"]

    def test_register_replaces_same_name(self):
        registry = ToolRegistry([recording_tool("a", "first")])
        replacement = recording_tool("a", "second")
        registry.register(replacement)
        assert len(registry) == 1
        assert registry.get("a") is replacement

    def test_subset(self):
        registry = ToolRegistry([recording_tool("read_source"), recording_tool("write_source")])
        subset = registry.subset(lambda t: not is_mutating(t.name))
        assert subset.names() == ["read_source"]
        assert len(registry) == 2

    def test_mutating_allow_list(self):
        assert is_mutating("write_source")
        assert is_mutating("create_source")
        assert not is_mutating("read_source")
        assert not is_mutating("research")


class TestCoerceResult:

    def test_matching_id_passes_through(self):
        result = ToolCallResult.success("c1", "ok")
        assert coerce_result("c1", result) is result

    def test_foreign_id_is_replaced(self):
        repaired = coerce_result("c1", ToolCallResult.error("other", "bad"))
        assert repaired == ToolCallResult("c1", "bad", True)

    def test_mapping_output(self):
        assert coerce_result("c1", {"content": 42}) == ToolCallResult("c1", "42", False)
        assert coerce_result("c1", {"is_error": True}) == ToolCallResult("c1", "", True)

    def test_unsupported_output(self):
        with pytest.raises(TypeError):
            coerce_result("c1", "just a string")


# ═══════════════════════════════════════════════════════════════
# Error formatting
# ═══════════════════════════════════════════════════════════════

class TestFormatters:

    def test_exception_result(self):
        result = format_exception_result("c1", ValueError("bad input"))
        assert result == ToolCallResult("c1", "Tool execution failed: ValueError - bad input", True)

    def test_exception_result_appends_response_body(self):
        exc = BackendError("PUT /x failed with HTTP 500", 500, "server exploded")
        result = format_exception_result("c1", exc)
        assert result.content.endswith("\nserver exploded")

    def test_exception_without_message(self):
        assert format_exception_result("c1", KeyError()).content == "Tool execution failed: KeyError - (no message)"

    @pytest.mark.parametrize("payload, expected", [
        ("<error><message>plain</message></error>", "plain"),
        ("<a><message>m</message><localizedMessage lang='EN'>loc</localizedMessage></a>", "loc"),
        ("<soap:Fault><faultstring>fs &amp; more</faultstring></soap:Fault>", "fs & more"),
        ('HTTP 400: {"error": {"message": "json message"}}', "json message"),
        ('{"detail": "no such object"}', "no such object"),
        ("nothing useful here", None),
        ("", None),
    ])
    def test_extract_fault_message(self, payload, expected):
        assert extract_fault_message(payload) == expected

    def test_success_results_never_compacted(self):
        result = ToolCallResult.success("c1", "x" * 2000)
        assert compact_error_result(result, 100) is result

    def test_short_errors_untouched(self):
        result = ToolCallResult.error("c1", "short failure")
        assert compact_error_result(result, 100) is result

    def test_unparseable_long_error_is_truncated(self):
        result = compact_error_result(ToolCallResult.error("c1", "e" * 1000), 100)
        assert len(result.content) <= 100
        assert result.is_error is True
        assert result.tool_call_id == "c1"


# ═══════════════════════════════════════════════════════════════
# Built-in backend tools
# ═══════════════════════════════════════════════════════════════

class TestBackendTools:

    def test_registry_without_gateway_has_three_tools(self, backend_store):
        registry = build_tool_registry(backend_store)
        assert registry.names() == ["read_source", "write_source", "create_source"]

    def test_read_existing(self, backend_store):
        backend_store.store["/programs/zfoo"] = "REPORT zfoo."
        result = build_tool_registry(backend_store).get("read_source").execute({"url": "/programs/zfoo"})
        assert result.is_error is False
        assert result.content == "REPORT zfoo."

    def test_read_missing_is_error_result(self, backend_store):
        result = build_tool_registry(backend_store).get("read_source").execute({"url": "/programs/nope"})
        assert result.is_error is True
        assert result.content == "Object not found: /programs/nope"

    def test_missing_arguments(self, backend_store):
        registry = build_tool_registry(backend_store)
        assert registry.get("read_source").execute({}).is_error
        result = registry.get("write_source").execute({"url": "/programs/zfoo"})
        assert result.is_error
        assert "'source'" in result.content
        assert backend_store.requests == []

    def test_write_existing(self, backend_store):
        backend_store.store["/programs/zfoo"] = "old"
        result = build_tool_registry(backend_store).get("write_source").execute(
            {"url": "/programs/zfoo", "source": "line 1\nline 2"}
        )
        assert result.is_error is False
        assert backend_store.store["/programs/zfoo"] == "line 1\nline 2"
        assert "2 lines" in result.content
        put = backend_store.requests[-1]
        assert put.method == "PUT"
        assert put.headers["content-type"].startswith("text/plain")

    def test_write_missing_raises_backend_error(self, backend_store):
        tool = build_tool_registry(backend_store).get("write_source")
        with pytest.raises(BackendError) as exc_info:
            tool.execute({"url": "/programs/nope", "source": "x"})
        assert exc_info.value.status_code == 404

    def test_create_new_and_conflict(self, backend_store):
        tool = build_tool_registry(backend_store).get("create_source")
        result = tool.execute({"url": "/programs/znew", "source": "REPORT znew."})
        assert result.content == "Created /programs/znew."
        assert backend_store.store["/programs/znew"] == "REPORT znew."

        with pytest.raises(BackendError) as exc_info:
            tool.execute({"url": "/programs/znew", "source": "again"})
        assert exc_info.value.status_code == 409
        assert "already exists" in exc_info.value.response_body

    def test_fetch_current_text_never_fails(self, backend_store):
        assert backend_store.fetch_current_text("/programs/nope") == ""
        assert backend_store.fetch_current_text("") == ""

    def test_health_check(self, backend_store):
        assert backend_store.health_check() is True


# ═══════════════════════════════════════════════════════════════
# Research sub-agent
# ═══════════════════════════════════════════════════════════════

class TestResearchTool:

    def test_registered_only_with_gateway(self, backend_store):
        registry = build_tool_registry(backend_store, make_gateway([]))
        assert registry.names() == ["read_source", "write_source", "create_source", "research"]

    def test_sub_registry_is_read_only_and_non_recursive(self, backend_store):
        registry = build_tool_registry(backend_store, make_gateway([]))
        assert registry.get("research").sub_registry().names() == ["read_source"]

    def test_runs_nested_loop_and_returns_final_text(self, backend_store):
        backend_store.store["/programs/zfoo"] = "REPORT zfoo."
        gateway = make_gateway([
            tool_call_reply(("r1", "read_source", {"url": "/programs/zfoo"})),
            final_reply("ZFOO is a one-line report."),
        ])
        research = build_tool_registry(backend_store, gateway).get("research")

        result = research.execute({"query": "What does zfoo do?"})

        assert result == ToolCallResult("", "ZFOO is a one-line report.", False)
        turns, system_prompt, definitions = gateway.send.call_args_list[0][0]
        assert system_prompt == RESEARCH_SYSTEM_PROMPT
        assert turns[0].text == "What does zfoo do?"
        assert [d.name for d in definitions] == ["read_source"]
        # The nested conversation saw the real backend text
        second_turns = gateway.send.call_args_list[1][0][0]
        assert second_turns[-1].tool_results[0].content == "REPORT zfoo."

    def test_missing_query(self, backend_store):
        research = build_tool_registry(backend_store, make_gateway([])).get("research")
        result = research.execute({"query": "  "})
        assert result.is_error
        assert result.content == "Missing required parameter 'query'."

    def test_failure_becomes_error_result(self, backend_store):
        gateway = make_gateway([LlmError("rate limited", status_code=429)])
        research = build_tool_registry(backend_store, gateway).get("research")
        result = research.execute({"query": "anything"})
        assert result.is_error
        assert result.content == "Research failed: rate limited"

    def test_empty_answer(self, backend_store):
        gateway = make_gateway([final_reply("")])
        research = build_tool_registry(backend_store, gateway).get("research")
        assert research.execute({"query": "anything"}).content == "Research sub-agent produced no response."

    def test_round_limit_applies_to_sub_agent(self, backend_store):
        gateway = make_gateway([])
        gateway.send.side_effect = lambda *args: tool_call_reply(("r", "read_source", {"url": "/x"}))
        research = build_tool_registry(backend_store, gateway, research_max_rounds=2).get("research")

        result = research.execute({"query": "loop forever"})

        assert result.is_error
        assert result.content.startswith("Research failed: Stopped after 2 rounds")
        assert gateway.send.call_count == 2


# ═══════════════════════════════════════════════════════════════
# Usage tracking
# ═══════════════════════════════════════════════════════════════

def _round_event(round_no: int, input_tokens: int, output_tokens: int, tools=()) -> AgentEvent:
    return AgentEvent("round_complete", {
        "round": round_no,
        "provider": "anthropic",
        "model": "claude-test",
        "duration": 1.25,
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
        "tools": list(tools),
        "message_count": 3,
    })


class TestUsageTracker:

    def test_ignores_other_events(self):
        tracker = UsageTracker()
        assert tracker.record(AgentEvent("text", {"text": "hi"})) is None
        assert tracker.request_count == 0

    def test_accumulates_rounds(self):
        tracker = UsageTracker()
        tracker.record(_round_event(1, 100, 20, ["read_source"]), session="s1")
        tracker.record(_round_event(2, 150, 30), session="s1")

        assert tracker.request_count == 2
        assert tracker.total.input_tokens == 250
        assert tracker.total.output_tokens == 50
        first = tracker.entries[0]
        assert isinstance(first, RequestLogEntry)
        assert first.tools == ("read_source",)
        assert first.session == "s1"

    def test_report_totals_line(self):
        tracker = UsageTracker()
        tracker.record(_round_event(1, 100, 20))
        tracker.record(_round_event(2, 150, 30))
        report = tracker.report()
        assert report.strip().splitlines()[-1] == "Total: 2 requests, 250 input tokens, 50 output tokens"
        assert "anthropic/claude-test" in report

    def test_to_dict_and_clear(self):
        tracker = UsageTracker()
        tracker.record(_round_event(1, 10, 5))
        data = tracker.to_dict()
        assert data["requests"] == 1
        assert data["total_tokens"] == 15
        assert data["entries"][0]["usage"]["input_tokens"] == 10

        tracker.clear()
        assert tracker.request_count == 0
        assert tracker.total.total_tokens == 0

    def test_records_events_from_a_real_run(self, registry):
        from aiedit.proxy.agent import AgentLoop, Conversation

        tracker = UsageTracker()
        conv = Conversation()
        conv.add_user_message("go")
        gateway = make_gateway([tool_call_reply(("c1", "read_source", {"url": "/a"})), final_reply()])

        AgentLoop(gateway, registry).run(conv, lambda e: tracker.record(e, "default"))

        assert tracker.request_count == 2
        assert tracker.total.input_tokens == 20
        assert [e.round for e in tracker.entries] == [1, 2]
