from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

import httpx

from ..agent.models import Role, ToolDefinition, Turn
from .auth import AuthStrategy, BearerAuth, QueryKeyAuth, anthropic_auth
from .codecs import AnthropicCodec, GeminiCodec, OpenAiCodec, WireCodec
from .errors import LlmError, LlmParseError
from .transport import DEFAULT_CONNECT_TIMEOUT, DEFAULT_TIMEOUT, HttpTransport

logger = logging.getLogger("aiedit.llm")


class Provider(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"
    MISTRAL = "mistral"
    CUSTOM = "custom"

    @property
    def display_name(self) -> str:
        return _PROVIDER_DEFAULTS[self][0]

    @property
    def default_model(self) -> str:
        return _PROVIDER_DEFAULTS[self][1]

    @property
    def default_base_url(self) -> str:
        return _PROVIDER_DEFAULTS[self][2]


_PROVIDER_DEFAULTS: dict[Provider, tuple[str, str, str]] = {
    Provider.ANTHROPIC: ("Anthropic", "claude-sonnet-4-20250514", "https://api.anthropic.com"),
    Provider.OPENAI: ("OpenAI", "gpt-4o", "https://api.openai.com"),
    Provider.GOOGLE: ("Google", "gemini-2.5-flash", "https://generativelanguage.googleapis.com"),
    Provider.MISTRAL: ("Mistral", "mistral-large-latest", "https://api.mistral.ai"),
    Provider.CUSTOM: ("Custom (OpenAI-compatible)", "", "http://127.0.0.1:8080"),
}


@dataclass(frozen=True)
class ProviderSettings:
    provider: Provider
    api_key: str = ""
    model: str = ""
    base_url: str = ""
    max_tokens: int = 8192
    timeout: float = DEFAULT_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT

    @property
    def resolved_model(self) -> str:
        return self.model or self.provider.default_model

    @property
    def resolved_base_url(self) -> str:
        return (self.base_url or self.provider.default_base_url).rstrip("/")

    def __repr__(self) -> str:
        # Never print the key
        return (
            f"ProviderSettings(provider={self.provider.value}, model={self.resolved_model!r}, "
            f"base_url={self.resolved_base_url!r}, max_tokens={self.max_tokens})"
        )


def repair_orphan_tool_turns(turns: list[Turn]) -> list[Turn]:
    """Rewrite TOOL turns whose calls are not in the preceding ASSISTANT turn.

    Windowing can leave a tool-result turn at the head of the kept tail;
    every vendor rejects results without their call, so those become a
    plain user note instead.
    """
    repaired: list[Turn] = []
    previous: Turn | None = None
    for turn in turns:
        if turn.role is Role.TOOL:
            issued = {c.id for c in previous.tool_calls} if previous is not None and previous.role is Role.ASSISTANT else set()
            if not all(r.tool_call_id in issued for r in turn.tool_results):
                lines = ["[Results of earlier tool calls]"]
                for r in turn.tool_results:
                    status = "error" if r.is_error else "ok"
                    lines.append(f"- {r.tool_call_id} ({status}): {r.content}")
                turn = Turn.user("\n".join(lines))
        repaired.append(turn)
        previous = turn
    return repaired


class LlmGateway:
    """Send a conversation plus tool catalogue, get back one assistant turn.

    One class for every vendor: the codec owns the wire shape, the auth
    strategy owns credentials, the transport owns HTTP and error mapping.
    """

    def __init__(self, settings: ProviderSettings, codec: WireCodec, transport: HttpTransport) -> None:
        self.settings = settings
        self.codec = codec
        self.transport = transport

    @property
    def provider_id(self) -> str:
        return self.codec.provider_id

    @property
    def model(self) -> str:
        return self.settings.resolved_model

    def send(
        self,
        turns: list[Turn],
        system_prompt: str | None,
        tools: list[ToolDefinition] | None = None,
    ) -> Turn:
        url = self.codec.endpoint(self.settings.resolved_base_url, self.model)
        payload = self.codec.build_payload(
            repair_orphan_tool_turns(list(turns)),
            system_prompt,
            list(tools or []),
            self.model,
            self.settings.max_tokens,
        )
        logger.debug(f"Sending {len(turns)} turns to {self.provider_id}/{self.model}")
        body = self.transport.post_json(url, payload)
        return self.codec.parse_reply(body)

    def list_models(self) -> list[str]:
        if not self.settings.api_key and self.settings.provider is not Provider.CUSTOM:
            raise LlmError("API key is required to fetch models", provider=self.provider_id)
        body = self.transport.get_json(self.codec.models_endpoint(self.settings.resolved_base_url))
        try:
            return self.codec.parse_models(body)
        except (AttributeError, KeyError, TypeError) as e:
            raise LlmParseError(
                f"Failed to parse {self.provider_id} model list: {e!r}",
                response_body=body,
                provider=self.provider_id,
            ) from e

    def close(self) -> None:
        self.transport.close()


def _auth_for(settings: ProviderSettings) -> AuthStrategy:
    if settings.provider is Provider.ANTHROPIC:
        return anthropic_auth(settings.api_key)
    if settings.provider is Provider.GOOGLE:
        return QueryKeyAuth(settings.api_key)
    return BearerAuth(settings.api_key)


def _codec_for(provider: Provider) -> WireCodec:
    if provider is Provider.ANTHROPIC:
        return AnthropicCodec()
    if provider is Provider.GOOGLE:
        return GeminiCodec()
    if provider is Provider.MISTRAL:
        return OpenAiCodec("mistral")
    if provider is Provider.CUSTOM:
        return OpenAiCodec("custom")
    return OpenAiCodec("openai")


def create_gateway(settings: ProviderSettings, client: httpx.Client | None = None) -> LlmGateway:
    """Build the gateway for ``settings.provider``; ``client`` is for tests and shared pools."""
    codec = _codec_for(settings.provider)
    transport = HttpTransport(
        codec.provider_id,
        _auth_for(settings),
        timeout=settings.timeout,
        connect_timeout=settings.connect_timeout,
        client=client,
    )
    logger.info(f"Created LLM gateway: {settings!r}")
    return LlmGateway(settings, codec, transport)
