"""Human approval handshake for mutating tool calls.

An ApprovalRequest is a one-shot rendezvous between the agent worker thread
(which blocks in ``await_decision``) and whichever thread the front end
resolves it from. It resolves at most once; a waiter woken by ``interrupt``
gets ApprovalInterrupted instead of a decision.
"""

from __future__ import annotations

import logging
import threading
import uuid
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger("aiedit.agent.approval")


class Decision(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EDITED = "edited"


class ApprovalInterrupted(Exception):
    """The waiter was released without a decision (the run is being cancelled)."""


class ApprovalRequest:

    def __init__(
        self,
        tool_call_id: str,
        tool_name: str,
        object_name: str,
        resource_locator: str,
        before_text: str | None,
        after_text: str | None,
        request_id: str | None = None,
    ) -> None:
        self.id = request_id or uuid.uuid4().hex[:12]
        self.tool_call_id = tool_call_id
        self.tool_name = tool_name
        self.object_name = object_name
        self.resource_locator = resource_locator
        self.before_text = before_text or ""
        self.after_text = after_text or ""

        self._cond = threading.Condition()
        self._decision = Decision.PENDING
        self._edited_text: str | None = None
        self._interrupted = False

    @property
    def decision(self) -> Decision:
        with self._cond:
            return self._decision

    @property
    def edited_text(self) -> str | None:
        with self._cond:
            return self._edited_text

    @property
    def is_resolved(self) -> bool:
        return self.decision is not Decision.PENDING

    @property
    def is_interrupted(self) -> bool:
        with self._cond:
            return self._interrupted

    @property
    def is_pending(self) -> bool:
        """Still waiting for a decision that someone will act on."""
        with self._cond:
            return self._decision is Decision.PENDING and not self._interrupted

    @property
    def final_text(self) -> str:
        """Text that should be written: the edit when EDITED, else the proposal."""
        with self._cond:
            if self._decision is Decision.EDITED and self._edited_text is not None:
                return self._edited_text
            return self.after_text

    def resolve(self, decision: Decision, edited_text: str | None = None) -> bool:
        """Record the human decision.

        Returns False if already resolved, or if the waiter was interrupted
        and nothing would act on the decision.
        """
        if decision is Decision.PENDING:
            raise ValueError("Cannot resolve an approval request to PENDING")
        if decision is Decision.EDITED and edited_text is None:
            raise ValueError("EDITED decisions require edited_text")

        with self._cond:
            if self._decision is not Decision.PENDING:
                logger.warning(
                    f"Approval {self.id} already resolved as {self._decision.value}; "
                    f"ignoring {decision.value}"
                )
                return False
            if self._interrupted:
                logger.warning(f"Approval {self.id} was interrupted; ignoring {decision.value}")
                return False
            self._decision = decision
            self._edited_text = edited_text if decision is Decision.EDITED else None
            self._cond.notify_all()

        logger.info(f"Approval {self.id} ({self.tool_name} on {self.object_name}) resolved: {decision.value}")
        return True

    def interrupt(self) -> None:
        with self._cond:
            self._interrupted = True
            self._cond.notify_all()

    def await_decision(self) -> Decision:
        """Block until resolved. No timeout: a destructive change is never auto-approved."""
        with self._cond:
            while self._decision is Decision.PENDING:
                if self._interrupted:
                    raise ApprovalInterrupted(f"Approval {self.id} was interrupted")
                self._cond.wait()
            return self._decision

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tool_call_id": self.tool_call_id,
            "tool_name": self.tool_name,
            "object_name": self.object_name,
            "resource_locator": self.resource_locator,
            "before_text": self.before_text,
            "after_text": self.after_text,
            "decision": self.decision.value,
            "edited_text": self.edited_text,
            "interrupted": self.is_interrupted,
        }

    def __repr__(self) -> str:
        return f"ApprovalRequest(id={self.id!r}, tool={self.tool_name!r}, decision={self.decision.value})"


class ApprovalRegistry:
    """Pending approval requests by id, for front ends that resolve them later."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requests: dict[str, ApprovalRequest] = {}

    def register(self, request: ApprovalRequest) -> None:
        with self._lock:
            # Resolved and interrupted entries are kept until the next
            # registration so a late resolve can be told apart from an unknown id.
            self._requests = {k: r for k, r in self._requests.items() if r.is_pending}
            self._requests[request.id] = request

    def get(self, request_id: str) -> ApprovalRequest | None:
        with self._lock:
            return self._requests.get(request_id)

    def pending(self) -> list[ApprovalRequest]:
        with self._lock:
            return [r for r in self._requests.values() if r.is_pending]

    def resolve(self, request_id: str, decision: Decision, edited_text: str | None = None) -> bool:
        with self._lock:
            request = self._requests.get(request_id)
        if request is None:
            return False
        return request.resolve(decision, edited_text)

    def interrupt_all(self) -> None:
        with self._lock:
            requests = list(self._requests.values())
            self._requests.clear()
        for request in requests:
            request.interrupt()


class CancellationToken:
    """Cooperative cancellation flag shared between a run and its controller.

    Callbacks registered with ``on_cancel`` fire once, on the cancelling
    thread; the loop uses this to wake a pending approval wait.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback``; returns a function that unregisters it."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def _remove() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return _remove
        callback()
        return lambda: None
