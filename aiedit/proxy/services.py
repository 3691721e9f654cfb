"""Long-lived objects shared by the front ends (server, CLI).

Everything the agent needs across runs is owned here and passed into each
AgentLoop explicitly; nothing in the agent package reads global state.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace

from .agent import (
    AgentLoop,
    ApprovalRegistry,
    CancellationToken,
    Conversation,
    LoopSettings,
    SessionStore,
    ToolRegistry,
    UsageTracker,
    build_tool_registry,
)
from .agent.loop import ApprovalHandler
from .backend import BackendClient
from .config import Config
from .llm import LlmGateway, create_gateway
from .system import get_system_prompt

logger = logging.getLogger("aiedit.server")


@dataclass
class ProxyServices:
    gateway: LlmGateway
    backend: BackendClient
    tools: ToolRegistry
    loop_settings: LoopSettings = field(default_factory=LoopSettings)
    system_prompt: str | None = None
    approval_required: bool = True
    sessions: SessionStore = field(default_factory=SessionStore)
    approvals: ApprovalRegistry = field(default_factory=ApprovalRegistry)
    usage: UsageTracker = field(default_factory=UsageTracker)
    config: Config | None = None

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._running: dict[str, CancellationToken] = {}

    @classmethod
    def from_config(cls, cfg: Config, approval_required: bool | None = None) -> ProxyServices:
        """Build everything from ``cfg``; ``approval_required`` overrides the configured value."""
        if approval_required is not None and approval_required != cfg.approval_required:
            cfg = replace(cfg, approval_required=approval_required)
        gateway = create_gateway(cfg.to_provider_settings())
        backend = BackendClient(
            cfg.backend_url,
            timeout=cfg.backend_timeout,
            token=cfg.backend_token or None,
        )
        tools = build_tool_registry(
            backend,
            gateway if cfg.research_enabled else None,
            research_max_rounds=cfg.research_max_rounds,
            research_max_input_tokens=cfg.research_max_input_tokens,
        )
        logger.info(f"Registered {len(tools)} tools: {', '.join(tools.names())}")
        return cls(
            gateway=gateway,
            backend=backend,
            tools=tools,
            loop_settings=cfg.to_loop_settings(),
            system_prompt=get_system_prompt(cfg),
            approval_required=cfg.approval_required,
            config=cfg,
        )

    def conversation(self, session: str) -> Conversation:
        return self.sessions.get_or_create(session, self.system_prompt)

    def new_loop(self, approval_handler: ApprovalHandler | None) -> AgentLoop:
        return AgentLoop(
            self.gateway,
            self.tools,
            approval_handler=approval_handler if self.approval_required else None,
            backend=self.backend,
            settings=self.loop_settings,
        )

    # ─── Run bookkeeping: at most one run per session ────────────────

    def begin(self, session: str) -> CancellationToken | None:
        """Reserve ``session`` for a run; None when one is already running."""
        with self._lock:
            if session in self._running:
                return None
            token = CancellationToken()
            self._running[session] = token
            return token

    def end(self, session: str) -> None:
        with self._lock:
            self._running.pop(session, None)

    def is_running(self, session: str) -> bool:
        with self._lock:
            return session in self._running

    def running(self) -> list[str]:
        with self._lock:
            return list(self._running)

    def cancel(self, session: str | None = None) -> list[str]:
        """Cancel one session's run, or every run when ``session`` is None."""
        with self._lock:
            targets = {k: t for k, t in self._running.items() if session is None or k == session}
        for key, token in targets.items():
            logger.warning(f"Cancelling run for session '{key}'")
            token.cancel()
        return list(targets)

    def close(self) -> None:
        self.cancel()
        self.approvals.interrupt_all()
        self.gateway.close()
        self.backend.close()
