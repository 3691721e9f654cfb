"""Wire codecs: common Turn model <-> each vendor's JSON shape.

Three codecs cover the four vendors:

- AnthropicCodec (protocol A): top-level ``system``, typed content blocks,
  tool results sent back as a user message of ``tool_result`` blocks.
- OpenAiCodec (protocols B and D): system prompt as the first message,
  arguments as a serialized JSON string, one ``tool`` message per result.
- GeminiCodec (protocol C): ``systemInstruction``, role ``model`` for the
  assistant, tool results as a user message of ``functionResponse`` parts,
  upper-cased schema types.

Codecs never touch the network; parse failures raise LlmParseError with
the raw body attached.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Protocol

from ..agent.models import Role, TokenUsage, ToolCallRequest, ToolDefinition, Turn
from .errors import LlmError, LlmParseError
from .schema import to_anthropic_tool, to_gemini_tool, to_openai_tool

DEFAULT_MAX_TOKENS = 8192

# Substrings of OpenAI model ids that are not chat models
_NON_CHAT_MODEL_MARKERS = ("embedding", "dall-e", "whisper", "tts", "moderation", "babbage")


def synthesize_call_id(name: str) -> str:
    return f"call_{name or 'tool'}_{uuid.uuid4().hex[:8]}"


def _int(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    return int(value) if isinstance(value, (int, float)) else 0


def _join_text(fragments: list[str]) -> str | None:
    fragments = [f for f in fragments if f]
    return "\n".join(fragments) if fragments else None


def _load_json(provider_id: str, body: str) -> Any:
    try:
        return json.loads(body)
    except ValueError as e:
        raise LlmParseError(
            f"Failed to parse {provider_id} response: {e}", response_body=body, provider=provider_id
        ) from e


class WireCodec(Protocol):
    provider_id: str

    def endpoint(self, base_url: str, model: str) -> str: ...

    def build_payload(
        self,
        turns: list[Turn],
        system_prompt: str | None,
        tools: list[ToolDefinition],
        model: str,
        max_tokens: int,
    ) -> dict[str, Any]: ...

    def parse_reply(self, body: str) -> Turn: ...

    def models_endpoint(self, base_url: str) -> str: ...

    def parse_models(self, body: str) -> list[str]: ...


# ─── Protocol A ───────────────────────────────────────────────────────


class AnthropicCodec:
    provider_id = "anthropic"

    def endpoint(self, base_url: str, model: str) -> str:
        return f"{base_url}/v1/messages"

    def models_endpoint(self, base_url: str) -> str:
        return f"{base_url}/v1/models?limit=100"

    def build_payload(self, turns, system_prompt, tools, model, max_tokens) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens if max_tokens > 0 else DEFAULT_MAX_TOKENS,
        }
        if system_prompt:
            body["system"] = system_prompt
        if tools:
            body["tools"] = [to_anthropic_tool(t) for t in tools]
        body["messages"] = [self._message(turn) for turn in turns]
        return body

    def _message(self, turn: Turn) -> dict[str, Any]:
        if turn.role is Role.TOOL:
            blocks = []
            for result in turn.tool_results:
                block: dict[str, Any] = {
                    "type": "tool_result",
                    "tool_use_id": result.tool_call_id,
                    "content": result.content,
                }
                if result.is_error:
                    block["is_error"] = True
                blocks.append(block)
            return {"role": "user", "content": blocks}

        content: list[dict[str, Any]] = []
        if turn.text:
            content.append({"type": "text", "text": turn.text})
        for call in turn.tool_calls:
            content.append({
                "type": "tool_use",
                "id": call.id,
                "name": call.name,
                "input": call.arguments or {},
            })
        role = "assistant" if turn.role is Role.ASSISTANT else "user"
        return {"role": role, "content": content}

    def parse_reply(self, body: str) -> Turn:
        data = _load_json(self.provider_id, body)
        try:
            fragments: list[str] = []
            calls: list[ToolCallRequest] = []
            for block in data.get("content") or []:
                block_type = block["type"]
                if block_type == "text":
                    fragments.append(block["text"])
                elif block_type == "tool_use":
                    name = block["name"]
                    arguments = block.get("input")
                    calls.append(ToolCallRequest(
                        id=block.get("id") or synthesize_call_id(name),
                        name=name,
                        arguments=arguments if isinstance(arguments, dict) else {},
                    ))
            usage = None
            if isinstance(data.get("usage"), dict):
                u = data["usage"]
                usage = TokenUsage(
                    input_tokens=_int(u, "input_tokens"),
                    output_tokens=_int(u, "output_tokens"),
                    cache_creation_tokens=_int(u, "cache_creation_input_tokens"),
                    cache_read_tokens=_int(u, "cache_read_input_tokens"),
                )
        except (AttributeError, KeyError, TypeError) as e:
            raise LlmParseError(
                f"Failed to parse anthropic response: {e!r}", response_body=body, provider=self.provider_id
            ) from e
        return Turn.assistant(_join_text(fragments), calls, usage)

    def parse_models(self, body: str) -> list[str]:
        data = _load_json(self.provider_id, body)
        return [m["id"] for m in data.get("data") or [] if isinstance(m, dict) and m.get("id")]


# ─── Protocols B and D ────────────────────────────────────────────────


class OpenAiCodec:

    def __init__(self, provider_id: str = "openai") -> None:
        self.provider_id = provider_id

    def endpoint(self, base_url: str, model: str) -> str:
        return f"{base_url}/v1/chat/completions"

    def models_endpoint(self, base_url: str) -> str:
        return f"{base_url}/v1/models"

    def build_payload(self, turns, system_prompt, tools, model, max_tokens) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens if max_tokens > 0 else DEFAULT_MAX_TOKENS,
        }
        if tools:
            body["tools"] = [to_openai_tool(t) for t in tools]

        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        for turn in turns:
            if turn.role is Role.USER:
                messages.append({"role": "user", "content": turn.text or ""})
            elif turn.role is Role.ASSISTANT:
                message: dict[str, Any] = {"role": "assistant", "content": turn.text}
                if turn.tool_calls:
                    message["tool_calls"] = [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.name,
                                "arguments": json.dumps(call.arguments or {}),
                            },
                        }
                        for call in turn.tool_calls
                    ]
                messages.append(message)
            else:
                # One message per result
                for result in turn.tool_results:
                    messages.append({
                        "role": "tool",
                        "tool_call_id": result.tool_call_id,
                        "content": result.content or "",
                    })
        body["messages"] = messages
        return body

    def parse_reply(self, body: str) -> Turn:
        data = _load_json(self.provider_id, body)
        try:
            choices = data.get("choices")
            if not choices:
                raise LlmParseError(
                    f"No choices returned in {self.provider_id} response",
                    response_body=body,
                    provider=self.provider_id,
                )
            message = choices[0]["message"]

            content = message.get("content")
            if isinstance(content, list):
                text = _join_text([p.get("text", "") for p in content if isinstance(p, dict)])
            else:
                text = content or None

            calls: list[ToolCallRequest] = []
            for raw in message.get("tool_calls") or []:
                function = raw["function"]
                name = function["name"]
                calls.append(ToolCallRequest(
                    id=raw.get("id") or synthesize_call_id(name),
                    name=name,
                    arguments=self._decode_arguments(function.get("arguments")),
                ))

            usage = None
            if isinstance(data.get("usage"), dict):
                u = data["usage"]
                details = u.get("prompt_tokens_details")
                usage = TokenUsage(
                    input_tokens=_int(u, "prompt_tokens"),
                    output_tokens=_int(u, "completion_tokens"),
                    cache_read_tokens=_int(details, "cached_tokens") if isinstance(details, dict) else 0,
                )
        except LlmParseError:
            raise
        except (AttributeError, KeyError, TypeError, IndexError) as e:
            raise LlmParseError(
                f"Failed to parse {self.provider_id} response: {e!r}",
                response_body=body,
                provider=self.provider_id,
            ) from e
        return Turn.assistant(text, calls, usage)

    @staticmethod
    def _decode_arguments(raw: Any) -> dict[str, Any]:
        if isinstance(raw, dict):
            return raw
        if not raw:
            return {}
        try:
            decoded = json.loads(raw)
        except (TypeError, ValueError):
            return {"_raw": raw}
        return decoded if isinstance(decoded, dict) else {"_raw": raw}

    def parse_models(self, body: str) -> list[str]:
        data = _load_json(self.provider_id, body)
        models = []
        for entry in data.get("data") or []:
            model_id = entry.get("id") if isinstance(entry, dict) else None
            if not model_id or model_id.startswith("ft:"):
                continue
            if any(marker in model_id for marker in _NON_CHAT_MODEL_MARKERS):
                continue
            if "davinci" in model_id and "gpt" not in model_id:
                continue
            models.append(model_id)
        return sorted(models)


# ─── Protocol C ───────────────────────────────────────────────────────


class GeminiCodec:
    provider_id = "gemini"

    def endpoint(self, base_url: str, model: str) -> str:
        return f"{base_url}/v1beta/models/{model}:generateContent"

    def models_endpoint(self, base_url: str) -> str:
        return f"{base_url}/v1beta/models?pageSize=100"

    def build_payload(self, turns, system_prompt, tools, model, max_tokens) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        if tools:
            body["tools"] = [{"functionDeclarations": [to_gemini_tool(t) for t in tools]}]
        if max_tokens > 0:
            body["generationConfig"] = {"maxOutputTokens": max_tokens}

        # Google has no tool role and matches responses by function name
        names_by_id = {
            call.id: call.name
            for turn in turns if turn.role is Role.ASSISTANT
            for call in turn.tool_calls
        }

        contents: list[dict[str, Any]] = []
        for turn in turns:
            if turn.role is Role.TOOL:
                parts = []
                for result in turn.tool_results:
                    response: dict[str, Any] = {"content": result.content}
                    if result.is_error:
                        response["error"] = True
                    parts.append({
                        "functionResponse": {
                            "name": names_by_id.get(result.tool_call_id, result.tool_call_id),
                            "response": response,
                        }
                    })
                contents.append({"role": "user", "parts": parts})
                continue

            parts = []
            if turn.text:
                parts.append({"text": turn.text})
            for call in turn.tool_calls:
                parts.append({"functionCall": {"name": call.name, "args": call.arguments or {}}})
            role = "model" if turn.role is Role.ASSISTANT else "user"
            contents.append({"role": role, "parts": parts})

        body["contents"] = contents
        return body

    def parse_reply(self, body: str) -> Turn:
        data = _load_json(self.provider_id, body)
        try:
            if isinstance(data.get("error"), dict):
                message = data["error"].get("message") or "Unknown error"
                raise LlmError(
                    f"Gemini API error: {message}", response_body=body, provider=self.provider_id
                )
            candidates = data.get("candidates")
            if not candidates:
                raise LlmParseError(
                    "No candidates returned in Gemini response",
                    response_body=body,
                    provider=self.provider_id,
                )
            parts = (candidates[0].get("content") or {}).get("parts") or []

            fragments: list[str] = []
            calls: list[ToolCallRequest] = []
            for part in parts:
                if "text" in part:
                    fragments.append(part["text"])
                if "functionCall" in part:
                    fc = part["functionCall"]
                    name = fc["name"]
                    args = fc.get("args")
                    calls.append(ToolCallRequest(
                        id=fc.get("id") or synthesize_call_id(name),
                        name=name,
                        arguments=args if isinstance(args, dict) else {},
                    ))

            usage = None
            if isinstance(data.get("usageMetadata"), dict):
                u = data["usageMetadata"]
                usage = TokenUsage(
                    input_tokens=_int(u, "promptTokenCount"),
                    output_tokens=_int(u, "candidatesTokenCount"),
                    cache_read_tokens=_int(u, "cachedContentTokenCount"),
                )
        except LlmError:
            raise
        except (AttributeError, KeyError, TypeError, IndexError) as e:
            raise LlmParseError(
                f"Failed to parse Gemini response: {e!r}", response_body=body, provider=self.provider_id
            ) from e
        return Turn.assistant(_join_text(fragments), calls, usage)

    def parse_models(self, body: str) -> list[str]:
        data = _load_json(self.provider_id, body)
        models = []
        for entry in data.get("models") or []:
            if not isinstance(entry, dict):
                continue
            if "generateContent" not in (entry.get("supportedGenerationMethods") or []):
                continue
            name = entry.get("name") or ""
            models.append(name.removeprefix("models/"))
        return models
