"""LLM gateway package.

    from aiedit.proxy.llm import create_gateway, Provider, ProviderSettings

Internal layout:
    errors.py    — LlmError, LlmParseError
    auth.py      — header / bearer / query-key auth strategies
    transport.py — HttpTransport (httpx, timeouts, error mapping)
    schema.py    — tool-definition shapes, Gemini schema transform
    codecs.py    — AnthropicCodec, OpenAiCodec, GeminiCodec
    gateway.py   — Provider, ProviderSettings, LlmGateway, create_gateway
"""

from .errors import LlmError, LlmParseError
from .gateway import LlmGateway, Provider, ProviderSettings, create_gateway

__all__ = [
    "LlmError",
    "LlmParseError",
    "LlmGateway",
    "Provider",
    "ProviderSettings",
    "create_gateway",
]
