"""
Tool result envelopes shared by every tool module.

Success: ``{"content": [{"type": "text", "text": "<message>\\n<json>"}]}``
Failure: ``{"content": [{"type": "text", "text": "Error <action>: <message>"}],
"isError": true}``
"""

from __future__ import annotations

import json
from typing import Any

from mcp_businessmap.errors import ToolError

UNKNOWN_ERROR = "Unknown error"


def to_json(data: Any) -> str:
    """Serialize data the way every tool result renders it."""
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def text_response(text: str) -> dict[str, Any]:
    """Build a tool result holding a single text block."""
    return {"content": [{"type": "text", "text": text}]}


def success_response(data: Any, message: str | None = None) -> dict[str, Any]:
    """
    Build a successful tool result.

    Args:
        data: JSON-serializable payload.
        message: Optional line placed before the JSON.
    """
    text = to_json(data)
    if message:
        text = f"{message}\n{text}"
    return text_response(text)


def error_response(error: BaseException | None, action: str) -> dict[str, Any]:
    """
    Build a failed tool result.

    Args:
        error: The failure. Anything that is not an exception with a message
            renders as "Unknown error".
        action: What was being done, e.g. "fetching card".
    """
    if isinstance(error, ToolError):
        message = error.message
    elif isinstance(error, BaseException) and str(error):
        message = str(error)
    else:
        message = UNKNOWN_ERROR
    result = text_response(f"Error {action}: {message}")
    result["isError"] = True
    return result


def dump_params(params: Any, *, exclude: set[str] | None = None) -> dict[str, Any]:
    """Return the explicitly provided arguments, without unset values."""
    return params.model_dump(exclude_none=True, exclude=exclude)
