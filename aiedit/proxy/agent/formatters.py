from __future__ import annotations

import html
import json
import logging
import re
from typing import Any

from .models import ToolCallResult

logger = logging.getLogger("aiedit.agent")

DEFAULT_ERROR_RESULT_MAX_LEN = 500

_XML_MESSAGE_RE = re.compile(
    r"<(?:[\w-]+:)?(localizedMessage|message|faultstring)\b[^>]*>(.*?)</(?:[\w-]+:)?\1>",
    re.DOTALL | re.IGNORECASE,
)
_TAG_RE = re.compile(r"<[^>]+>")


def format_exception_result(tool_call_id: str, exc: BaseException) -> ToolCallResult:
    """Turn an exception raised by a tool into an error result the model can read."""
    message = str(exc) or "(no message)"
    content = f"Tool execution failed: {type(exc).__name__} - {message}"
    body = getattr(exc, "response_body", None)
    if isinstance(body, str) and body.strip():
        content += f"\n{body.strip()}"
    return ToolCallResult.error(tool_call_id, content)


def extract_fault_message(payload: str) -> str | None:
    """Find the human-readable message inside an XML or JSON fault body."""
    if not payload:
        return None

    # XML faults: prefer localizedMessage, then message, then faultstring
    found: dict[str, str] = {}
    for match in _XML_MESSAGE_RE.finditer(payload):
        tag = match.group(1).lower()
        text = html.unescape(_TAG_RE.sub("", match.group(2))).strip()
        if text and tag not in found:
            found[tag] = text
    for tag in ("localizedmessage", "message", "faultstring"):
        if tag in found:
            return found[tag]

    start, end = payload.find("{"), payload.rfind("}")
    if 0 <= start < end:
        try:
            data: Any = json.loads(payload[start:end + 1])
        except ValueError:
            data = None
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and isinstance(error.get("message"), str):
                return error["message"]
            if isinstance(error, str):
                return error
            for key in ("message", "detail"):
                if isinstance(data.get(key), str):
                    return data[key]
    return None


def compact_error_result(result: ToolCallResult, max_len: int = DEFAULT_ERROR_RESULT_MAX_LEN) -> ToolCallResult:
    """Shrink a verbose error result to its headline plus the extracted fault message.

    Success results and errors already within ``max_len`` pass through.
    """
    if not result.is_error or len(result.content or "") <= max_len:
        return result

    content = result.content
    headline = content.strip().splitlines()[0] if content.strip() else ""
    message = extract_fault_message(content)

    if message and message not in headline:
        compacted = f"{headline}\nMessage: {message}"
    elif message:
        compacted = headline
    else:
        return result.truncated(max_len)

    logger.debug(f"Compacted error result {result.tool_call_id}: {len(content)} -> {len(compacted)} chars")
    return ToolCallResult.error(result.tool_call_id, compacted).truncated(max_len)
