"""Tests for the message model, conversation windowing/compaction and the session store."""

import threading

import pytest

from aiedit.proxy.agent import (
    Conversation,
    Role,
    SessionStore,
    TokenUsage,
    ToolCallRequest,
    ToolCallResult,
    Turn,
)
from aiedit.proxy.agent.conversation import WINDOW_MARKER


def _numbered_conversation(n: int) -> Conversation:
    conv = Conversation("system")
    for i in range(n):
        if i % 2 == 0:
            conv.append(Turn.user(f"user {i}"))
        else:
            conv.append(Turn.assistant(f"assistant {i}"))
    return conv


def _tool_turn(call_id: str, content: str) -> Turn:
    return Turn.tool_results_turn([ToolCallResult.success(call_id, content)])


# ═══════════════════════════════════════════════════════════════
# Message Model
# ═══════════════════════════════════════════════════════════════

class TestTurn:
    """Role invariants and constructors."""

    def test_user_turn_rejects_tool_calls(self):
        with pytest.raises(ValueError):
            Turn(Role.USER, text="x", tool_calls=(ToolCallRequest("1", "read_source"),))

    def test_tool_turn_rejects_text(self):
        with pytest.raises(ValueError):
            Turn(Role.TOOL, text="x", tool_results=(ToolCallResult.success("1", "ok"),))

    def test_assistant_turn_rejects_tool_results(self):
        with pytest.raises(ValueError):
            Turn(Role.ASSISTANT, tool_results=(ToolCallResult.success("1", "ok"),))

    def test_lists_are_stored_as_tuples(self):
        turn = Turn.assistant("hi", [ToolCallRequest("1", "read_source", {"url": "/a"})])
        assert isinstance(turn.tool_calls, tuple)
        assert turn.has_tool_calls is True

    def test_to_dict(self):
        turn = Turn.assistant("hi", usage=TokenUsage(input_tokens=3, output_tokens=1))
        data = turn.to_dict()
        assert data["role"] == "assistant"
        assert data["text"] == "hi"
        assert data["usage"]["input_tokens"] == 3
        assert "tool_calls" not in data


class TestTokenUsage:

    def test_addition(self):
        total = TokenUsage(1, 2, 3, 4) + TokenUsage(10, 20, 30, 40)
        assert total == TokenUsage(11, 22, 33, 44)
        assert total.total_tokens == 33

    def test_add_none(self):
        usage = TokenUsage(5, 5)
        assert usage + None is usage


class TestTruncation:
    """ToolCallResult.truncated never exceeds max_len."""

    def test_short_content_untouched(self):
        result = ToolCallResult.success("1", "short")
        assert result.truncated(100) is result

    def test_long_content_is_bounded_and_annotated(self):
        result = ToolCallResult.success("1", "x" * 5000)
        truncated = result.truncated(200)
        assert len(truncated.content) <= 200
        assert "[truncated from 5000 chars]" in truncated.content
        assert truncated.tool_call_id == "1"
        assert truncated.is_error is False

    @pytest.mark.parametrize("max_len", [1, 10, 37, 38, 500, 4999])
    def test_bound_holds_for_tiny_limits(self, max_len):
        truncated = ToolCallResult.error("1", "y" * 5000).truncated(max_len)
        assert len(truncated.content) <= max_len
        assert truncated.is_error is True


# ═══════════════════════════════════════════════════════════════
# Windowing
# ═══════════════════════════════════════════════════════════════

class TestWindow:

    def test_noop_within_budget(self):
        conv = _numbered_conversation(10)
        assert conv.window(10) == 0
        assert len(conv) == 10

    def test_keeps_first_turn_marker_and_tail(self):
        conv = _numbered_conversation(50)
        original = conv.turns

        dropped = conv.window(10)

        turns = conv.turns
        assert len(turns) == 10
        assert turns[0] == original[0]
        assert turns[1].role is Role.USER
        assert turns[1].text == WINDOW_MARKER.format(dropped=dropped)
        assert turns[2:] == original[-8:]
        assert dropped == 50 - 1 - 8

    def test_max_turns_clamped_to_four(self):
        conv = _numbered_conversation(20)
        conv.window(1)
        turns = conv.turns
        assert len(turns) == 4
        assert turns[0].text == "user 0"
        assert turns[-1].text == "assistant 19"

    def test_second_window_reports_cumulative_omissions(self):
        conv = _numbered_conversation(50)
        assert conv.window(10) == 41
        for i in range(50, 60):
            conv.append(Turn.user(f"user {i}"))

        # The old marker is removed but is not an original turn
        assert conv.window(10) == 10

        turns = conv.turns
        assert len(turns) == 10
        assert turns[0].text == "user 0"
        assert turns[1].text == WINDOW_MARKER.format(dropped=51)
        assert sum(1 for t in turns if t.text == WINDOW_MARKER.format(dropped=41)) == 0

    def test_clear_resets_omission_count(self):
        conv = _numbered_conversation(20)
        conv.window(6)
        conv.clear()
        for i in range(20):
            conv.append(Turn.user(f"again {i}"))
        conv.window(6)
        assert conv.turns[1].text == WINDOW_MARKER.format(dropped=15)

    def test_idempotent_once_within_budget(self):
        conv = _numbered_conversation(30)
        conv.window(12)
        snapshot = conv.turns
        assert conv.window(12) == 0
        assert conv.turns == snapshot


# ═══════════════════════════════════════════════════════════════
# Tool-result compaction
# ═══════════════════════════════════════════════════════════════

class TestCompactToolResults:

    def _conversation(self) -> Conversation:
        conv = Conversation()
        conv.append(Turn.user("go"))
        for i in range(3):
            conv.append(Turn.assistant(None, [ToolCallRequest(f"c{i}", "read_source", {})]))
            conv.append(_tool_turn(f"c{i}", "z" * 3000))
        return conv

    def test_all_but_newest_tool_turn_are_bounded(self):
        conv = self._conversation()
        rewritten = conv.compact_tool_results(100)

        tool_turns = [t for t in conv.turns if t.role is Role.TOOL]
        assert rewritten == 2
        for turn in tool_turns[:-1]:
            assert all(len(r.content) <= 100 for r in turn.tool_results)
        assert tool_turns[-1].tool_results[0].content == "z" * 3000

    def test_compaction_copies_turns(self):
        conv = self._conversation()
        before = conv.turns
        conv.compact_tool_results(100)
        # The original turn objects are untouched
        assert before[2].tool_results[0].content == "z" * 3000

    def test_idempotent(self):
        conv = self._conversation()
        conv.compact_tool_results(100)
        snapshot = conv.turns
        assert conv.compact_tool_results(100) == 0
        assert conv.turns == snapshot


# ═══════════════════════════════════════════════════════════════
# Session Store
# ═══════════════════════════════════════════════════════════════

class TestSessionStore:

    def test_get_or_create_returns_same_instance(self):
        store = SessionStore()
        a = store.get_or_create("s1", "prompt")
        assert store.get_or_create("s1") is a
        assert a.system_prompt == "prompt"
        assert "s1" in store
        assert len(store) == 1

    def test_clear_removes_and_empties(self):
        store = SessionStore()
        conv = store.get_or_create("s1")
        conv.add_user_message("hello")
        assert store.clear("s1") is True
        assert len(conv) == 0
        assert store.get("s1") is None
        assert store.clear("s1") is False

    def test_clear_all(self):
        store = SessionStore()
        store.get_or_create("a")
        store.get_or_create("b")
        store.clear_all()
        assert store.keys() == []

    def test_concurrent_creation_yields_one_conversation(self):
        store = SessionStore()
        seen = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            seen.append(store.get_or_create("shared"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len({id(c) for c in seen}) == 1
