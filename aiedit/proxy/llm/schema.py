"""Tool-definition shapes for each vendor's function-calling API."""

from __future__ import annotations

import copy
from typing import Any

from ..agent.models import ToolDefinition

# JSON-Schema keywords Google's function declarations reject
GEMINI_UNSUPPORTED_KEYS = frozenset({
    "examples",
    "$schema",
    "additionalProperties",
    "default",
    "title",
    "$id",
    "$ref",
    "definitions",
    "$defs",
})


def _parameters(tool: ToolDefinition) -> dict[str, Any]:
    return copy.deepcopy(tool.parameters) if tool.parameters else {}


def to_anthropic_tool(tool: ToolDefinition) -> dict[str, Any]:
    return {
        "name": tool.name,
        "description": tool.description,
        "input_schema": _parameters(tool) or {"type": "object", "properties": {}},
    }


def to_openai_tool(tool: ToolDefinition) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": _parameters(tool) or {"type": "object", "properties": {}},
        },
    }


def to_gemini_tool(tool: ToolDefinition) -> dict[str, Any]:
    return {
        "name": tool.name,
        "description": tool.description,
        "parameters": to_gemini_schema(tool.parameters) if tool.parameters else {},
    }


def to_gemini_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Upper-case every ``type`` value and drop unsupported keywords, recursively.

    Pure: the input is never modified.
    """
    result: dict[str, Any] = {}
    for key, value in schema.items():
        if key in GEMINI_UNSUPPORTED_KEYS:
            continue
        if key == "type" and isinstance(value, str):
            result[key] = value.upper()
        elif key == "type" and isinstance(value, list):
            result[key] = [v.upper() if isinstance(v, str) else v for v in value]
        elif key == "properties" and isinstance(value, dict):
            # Keys here are property names, not keywords; never filter them
            result[key] = {
                name: to_gemini_schema(sub) if isinstance(sub, dict) else sub
                for name, sub in value.items()
            }
        elif isinstance(value, dict):
            result[key] = to_gemini_schema(value)
        elif isinstance(value, list):
            result[key] = [to_gemini_schema(v) if isinstance(v, dict) else copy.deepcopy(v) for v in value]
        else:
            result[key] = value
    return result
