"""Conversation state and the per-session table.

A Conversation is owned by exactly one AgentLoop run at a time; only the
SessionStore lookup is guarded for concurrent access.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterator

from .models import Role, Turn

logger = logging.getLogger("aiedit.agent.conversation")

MIN_WINDOW_TURNS = 4
DEFAULT_MAX_TURNS = 40
DEFAULT_TOOL_RESULT_MAX_LEN = 2000

WINDOW_MARKER = (
    "[System note: {dropped} earlier messages were omitted to save context space. "
    "The original request and recent messages are preserved.]"
)


class Conversation:

    def __init__(self, system_prompt: str | None = None, turns: list[Turn] | None = None) -> None:
        self.system_prompt = system_prompt
        self._turns: list[Turn] = list(turns or [])
        # Marker inserted by the last window() call and the original turns it stands for
        self._marker: Turn | None = None
        self._omitted = 0

    @property
    def turns(self) -> list[Turn]:
        return list(self._turns)

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)

    def add_user_message(self, text: str) -> None:
        self.append(Turn.user(text))

    def clear(self) -> None:
        self._turns.clear()
        self._marker = None
        self._omitted = 0

    def window(self, max_turns: int = DEFAULT_MAX_TURNS) -> int:
        """Drop middle turns so at most ``max_turns`` remain.

        Turn 0 (the operator's original request) always survives, followed by a
        marker naming how many turns have been omitted so far, then the most
        recent ``max_turns - 2`` turns. Returns the number of turns dropped by
        this call; a marker left by an earlier call is not counted.
        """
        max_turns = max(max_turns, MIN_WINDOW_TURNS)
        if len(self._turns) <= max_turns:
            return 0

        keep_recent = max_turns - 2
        start_of_recent = len(self._turns) - keep_recent
        removed = self._turns[1:start_of_recent]
        dropped = sum(1 for turn in removed if turn is not self._marker)
        self._omitted += dropped

        first = self._turns[0]
        recent = self._turns[start_of_recent:]
        self._marker = Turn.user(WINDOW_MARKER.format(dropped=self._omitted))
        self._turns = [first, self._marker, *recent]

        logger.info(f"Windowed conversation to {len(self._turns)} turns (dropped {dropped}, {self._omitted} in total)")
        return dropped

    def compact_tool_results(self, max_len: int = DEFAULT_TOOL_RESULT_MAX_LEN) -> int:
        """Truncate long tool results in every TOOL turn but the newest.

        Returns the number of turns that were rewritten.
        """
        last_tool_index = -1
        for i in range(len(self._turns) - 1, -1, -1):
            if self._turns[i].role is Role.TOOL:
                last_tool_index = i
                break

        rewritten = 0
        for i, turn in enumerate(self._turns):
            if turn.role is not Role.TOOL or i == last_tool_index:
                continue
            compacted = turn.with_truncated_tool_results(max_len)
            if compacted is not turn:
                self._turns[i] = compacted
                rewritten += 1

        if rewritten:
            logger.debug(f"Compacted tool results in {rewritten} older turns (max_len={max_len})")
        return rewritten

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(list(self._turns))

    def __repr__(self) -> str:
        return (
            f"Conversation(turns={len(self._turns)}, "
            f"system_prompt={'set' if self.system_prompt else 'none'})"
        )


class SessionStore:
    """Conversations keyed by session name.

    Created by whoever composes the agent (server, CLI) and passed in by
    reference; there is no module-level instance.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._conversations: dict[str, Conversation] = {}

    def get_or_create(self, key: str, system_prompt: str | None = None) -> Conversation:
        with self._lock:
            conversation = self._conversations.get(key)
            if conversation is None:
                conversation = Conversation(system_prompt)
                self._conversations[key] = conversation
                logger.info(f"Created conversation for session '{key}'")
            return conversation

    def get(self, key: str) -> Conversation | None:
        with self._lock:
            return self._conversations.get(key)

    def clear(self, key: str) -> bool:
        with self._lock:
            conversation = self._conversations.pop(key, None)
        if conversation is None:
            return False
        conversation.clear()
        logger.info(f"Cleared conversation for session '{key}'")
        return True

    def clear_all(self) -> None:
        with self._lock:
            conversations = list(self._conversations.values())
            self._conversations.clear()
        for conversation in conversations:
            conversation.clear()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._conversations)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._conversations

    def __len__(self) -> int:
        with self._lock:
            return len(self._conversations)
