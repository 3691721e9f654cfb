"""FastAPI proxy server: bridges a front end ↔ LLM gateway ↔ backend tools."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Literal

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from .agent import AgentEvent, ApprovalRequest, CancellationToken, Decision, RunResult
from .config import get_config
from .services import ProxyServices

logger = logging.getLogger("aiedit.server")

_TERMINAL_EVENTS = ("done", "error")


# ─── Request/Response Models ─────────────────────────────────────────

class ChatRequest(BaseModel):
    message: str
    session: str = "default"
    stream: bool = True


class SessionRequest(BaseModel):
    session: str | None = None


class ApprovalDecisionRequest(BaseModel):
    decision: Literal["accepted", "rejected", "edited"]
    edited_text: str | None = None


def _services(request: Request) -> ProxyServices:
    return request.app.state.services


def _sse(event: AgentEvent) -> dict[str, str]:
    return {
        "event": event.type,
        "data": json.dumps({"type": event.type, **event.data}, default=str),
    }


def _result_dict(result: RunResult) -> dict[str, Any]:
    return {
        "state": result.state.value,
        "reason": result.reason.value if result.reason else None,
        "message": result.message,
        "rounds": result.rounds,
        "usage": result.usage.to_dict(),
        "text": result.final_turn.text if result.final_turn is not None else None,
    }


class _RunBridge:
    """Runs one AgentLoop on a worker thread and hands its events to the event loop."""

    def __init__(self, services: ProxyServices, session: str, token: CancellationToken) -> None:
        self.services = services
        self.session = session
        self.token = token
        self.queue: asyncio.Queue[AgentEvent] = asyncio.Queue()
        self._loop = asyncio.get_running_loop()
        self.task: asyncio.Task[RunResult] | None = None

    def _publish(self, event: AgentEvent) -> None:
        self._loop.call_soon_threadsafe(self.queue.put_nowait, event)

    def _on_event(self, event: AgentEvent) -> None:
        self.services.usage.record(event, self.session)
        if event.type in _TERMINAL_EVENTS:
            # Free the session before any consumer can see the run as finished
            self.services.end(self.session)
        self._publish(event)

    def _on_approval(self, request: ApprovalRequest) -> None:
        self.services.approvals.register(request)
        self._publish(AgentEvent("approval", {"session": self.session, **request.to_dict()}))

    def start(self, message: str) -> asyncio.Task[RunResult]:
        conversation = self.services.conversation(self.session)
        conversation.add_user_message(message)
        agent = self.services.new_loop(self._on_approval)
        self.task = asyncio.create_task(asyncio.to_thread(agent.run, conversation, self._on_event, self.token))
        self.task.add_done_callback(lambda _: self.services.end(self.session))
        return self.task

    async def events(self) -> AsyncIterator[AgentEvent]:
        try:
            while True:
                event = await self.queue.get()
                yield event
                if event.type in _TERMINAL_EVENTS:
                    break
        finally:
            if self.task is not None and not self.task.done():
                # Client went away mid-run
                logger.warning(f"Event stream for session '{self.session}' closed before the run finished")
                self.token.cancel()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    owned = app.state.services is None
    if owned:
        cfg = get_config()
        logger.info(f"Starting AIEdit Proxy on {cfg.proxy_host}:{cfg.proxy_port}")
        logger.info(f"  LLM: {cfg.llm_provider} (model: {cfg.llm_model or 'provider default'})")
        logger.info(f"  Backend: {cfg.backend_url}")
        app.state.services = ProxyServices.from_config(cfg)

    services: ProxyServices = app.state.services
    backend_ok = await asyncio.to_thread(services.backend.health_check)
    logger.info(f"  Backend status: {'✓ connected' if backend_ok else '✗ unavailable'}")

    yield

    if owned:
        services.close()
        app.state.services = None
    logger.info("AIEdit Proxy shutdown complete")


router = APIRouter(prefix="/api")


# ─── Routes ──────────────────────────────────────────────────────────

@router.get("/status")
async def get_status(request: Request) -> JSONResponse:
    """Health check and connection status."""
    services = _services(request)
    backend_ok = await asyncio.to_thread(services.backend.health_check)
    settings = services.gateway.settings
    return JSONResponse({
        "status": "ok" if backend_ok else "degraded",
        "llm": {
            "provider": services.gateway.provider_id,
            "model": services.gateway.model,
            "base_url": settings.resolved_base_url,
            "api_key_set": bool(settings.api_key),
        },
        "backend": {
            "connected": backend_ok,
            "url": services.backend.base_url,
        },
        "agent": {
            "sessions": services.sessions.keys(),
            "running": services.running(),
            "pending_approvals": len(services.approvals.pending()),
            "approval_required": services.approval_required,
            "tools": services.tools.names(),
        },
        "config": services.config.to_public_dict() if services.config is not None else None,
    })


@router.get("/tools")
async def list_tools(request: Request) -> JSONResponse:
    """List available tools."""
    definitions = _services(request).tools.definitions()
    return JSONResponse({
        "count": len(definitions),
        "tools": [d.to_dict() for d in definitions],
    })


@router.post("/chat", response_model=None)
async def chat(body: ChatRequest, request: Request) -> EventSourceResponse | JSONResponse:
    """Send a message; stream loop events as SSE or collect them."""
    services = _services(request)
    token = services.begin(body.session)
    if token is None:
        return JSONResponse(
            {"error": f"A run is already in progress for session '{body.session}'"},
            status_code=409,
        )

    bridge = _RunBridge(services, body.session, token)
    try:
        task = bridge.start(body.message)
    except Exception:
        services.end(body.session)
        raise

    if body.stream:
        async def stream() -> AsyncIterator[dict[str, str]]:
            async for event in bridge.events():
                yield _sse(event)

        return EventSourceResponse(stream(), media_type="text/event-stream")

    # Non-streaming: collect all events
    events = [{"type": event.type, **event.data} async for event in bridge.events()]
    result = await task
    services.end(body.session)
    return JSONResponse({"events": events, "result": _result_dict(result)}, status_code=200)


@router.get("/approvals")
async def list_approvals(request: Request) -> JSONResponse:
    """Approval requests waiting for a human decision."""
    pending = _services(request).approvals.pending()
    return JSONResponse({"count": len(pending), "approvals": [r.to_dict() for r in pending]})


@router.post("/approvals/{request_id}")
async def resolve_approval(request_id: str, body: ApprovalDecisionRequest, request: Request) -> JSONResponse:
    """Accept, reject or edit a pending change."""
    approvals = _services(request).approvals
    pending = approvals.get(request_id)
    if pending is None:
        return JSONResponse({"error": f"Unknown approval request '{request_id}'"}, status_code=404)
    if pending.is_resolved:
        return JSONResponse(
            {"error": f"Approval request '{request_id}' is already {pending.decision.value}"},
            status_code=409,
        )
    if pending.is_interrupted:
        return JSONResponse(
            {"error": f"Approval request '{request_id}' was cancelled with its run"},
            status_code=409,
        )

    decision = Decision(body.decision)
    try:
        resolved = approvals.resolve(request_id, decision, body.edited_text)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=422)
    if not resolved:
        return JSONResponse({"error": f"Approval request '{request_id}' is no longer pending"}, status_code=409)
    return JSONResponse({"status": "ok", "id": request_id, "decision": decision.value})


@router.post("/stop")
async def stop_agent(request: Request, body: SessionRequest | None = None) -> JSONResponse:
    """Cancel the running agent for one session, or all of them."""
    session = body.session if body else None
    cancelled = _services(request).cancel(session)
    return JSONResponse({"status": "ok", "cancelled": cancelled})


@router.post("/reset")
async def reset_conversation(request: Request, body: SessionRequest | None = None) -> JSONResponse:
    """Reset conversation history."""
    services = _services(request)
    session = body.session if body else None
    if session is not None:
        if services.is_running(session):
            return JSONResponse({"error": f"Session '{session}' is running; stop it first"}, status_code=409)
        services.sessions.clear(session)
        return JSONResponse({"status": "ok", "message": f"Conversation '{session}' reset"})

    if services.running():
        return JSONResponse({"error": "Runs are in progress; stop them first"}, status_code=409)
    services.sessions.clear_all()
    return JSONResponse({"status": "ok", "message": "All conversations reset"})


@router.get("/history")
async def get_history(request: Request, session: str = "default") -> JSONResponse:
    """Get conversation history (without system prompt)."""
    conversation = _services(request).sessions.get(session)
    messages = [turn.to_dict() for turn in conversation.turns] if conversation else []
    return JSONResponse({"session": session, "messages": messages})


@router.get("/usage", response_model=None)
async def get_usage(request: Request, format: Literal["json", "text"] = "json") -> JSONResponse | PlainTextResponse:
    """Token usage per gateway round, with totals; ``format=text`` gives the printable request log."""
    usage = _services(request).usage
    if format == "text":
        return PlainTextResponse(usage.report())
    return JSONResponse(usage.to_dict())


def create_app(services: ProxyServices | None = None) -> FastAPI:
    """Build the app; ``services`` is supplied by tests, otherwise built from config at startup."""
    app = FastAPI(
        title="AIEdit Proxy",
        version="0.1.0",
        description="LLM agent bridge with human-approved source edits",
        lifespan=lifespan,
    )
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()


def run_server() -> None:
    """Run the proxy server."""
    import uvicorn

    cfg = get_config()
    uvicorn.run(
        "aiedit.proxy.server:app",
        host=cfg.proxy_host,
        port=cfg.proxy_port,
        log_level="warning",
        log_config=None,  # Keep our global logging setup
        reload=False,
    )
