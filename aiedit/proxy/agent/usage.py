from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .models import AgentEvent, TokenUsage


@dataclass(frozen=True)
class RequestLogEntry:
    """Telemetry for one gateway round, built from a ``round_complete`` event."""

    round: int
    provider: str
    model: str
    duration: float
    usage: TokenUsage
    tools: tuple[str, ...] = ()
    message_count: int = 0
    session: str | None = None
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_event(cls, event: AgentEvent, session: str | None = None) -> RequestLogEntry:
        data = event.data
        usage = data.get("usage") or {}
        return cls(
            round=int(data.get("round", 0)),
            provider=str(data.get("provider", "")),
            model=str(data.get("model", "")),
            duration=float(data.get("duration", 0.0)),
            usage=TokenUsage(
                input_tokens=int(usage.get("input_tokens", 0)),
                output_tokens=int(usage.get("output_tokens", 0)),
                cache_creation_tokens=int(usage.get("cache_creation_tokens", 0)),
                cache_read_tokens=int(usage.get("cache_read_tokens", 0)),
            ),
            tools=tuple(data.get("tools") or ()),
            message_count=int(data.get("message_count", 0)),
            session=session,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "round": self.round,
            "provider": self.provider,
            "model": self.model,
            "duration": self.duration,
            "usage": self.usage.to_dict(),
            "tools": list(self.tools),
            "message_count": self.message_count,
            "session": self.session,
            "timestamp": self.timestamp,
        }

    def __str__(self) -> str:
        clock = datetime.fromtimestamp(self.timestamp).strftime("%H:%M:%S")
        tools = ", ".join(self.tools) if self.tools else "-"
        return (
            f"[{clock}] #{self.round} {self.provider}/{self.model} "
            f"{self.duration:.1f}s {self.usage} msgs={self.message_count} tools={tools}"
        )


class UsageTracker:
    """Thread-safe accumulator of per-round usage across runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[RequestLogEntry] = []
        self._total = TokenUsage()

    def record(self, event: AgentEvent, session: str | None = None) -> RequestLogEntry | None:
        """Consume an event; anything but ``round_complete`` is ignored."""
        if event.type != "round_complete":
            return None
        entry = RequestLogEntry.from_event(event, session)
        with self._lock:
            self._entries.append(entry)
            self._total = self._total + entry.usage
        return entry

    @property
    def entries(self) -> list[RequestLogEntry]:
        with self._lock:
            return list(self._entries)

    @property
    def total(self) -> TokenUsage:
        with self._lock:
            return self._total

    @property
    def request_count(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._total = TokenUsage()

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "requests": len(self._entries),
                "total": self._total.to_dict(),
                "total_tokens": self._total.total_tokens,
                "entries": [e.to_dict() for e in self._entries],
            }

    def report(self) -> str:
        with self._lock:
            entries = list(self._entries)
            total = self._total
        lines = ["Request Log", "=" * 40, ""]
        lines.extend(str(e) for e in entries)
        lines.append("=" * 40)
        lines.append(
            f"Total: {len(entries)} requests, {total.input_tokens} input tokens, "
            f"{total.output_tokens} output tokens"
        )
        return "\n".join(lines) + "\n"
