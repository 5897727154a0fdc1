"""
JSON-RPC 2.0 protocol handling for the BusinessMap MCP Server.

Features:
- JSON-RPC 2.0 request parsing with validation (from text or decoded JSON)
- JSON-RPC 2.0 response formatting (success and error)
- ToolError to JSON-RPC error code mapping
- MCP method names and protocol version negotiation

Error Code Mapping:
- -32700: Parse error (malformed JSON)
- -32600: Invalid Request (missing/invalid jsonrpc, method, etc.)
- -32601: Method not found (unknown MCP method)
- -32602: Invalid params (argument validation failed, unknown tool/prompt)
- -32603: Internal error (framework failure)
- -32002: Resource not found
- -32000 to -32099: Server errors (mapped from ToolError)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from mcp_businessmap.errors import ToolError

# =============================================================================
# JSON-RPC Error Codes
# =============================================================================

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

RESOURCE_NOT_FOUND = -32002

ERROR_CODE_MAP: dict[str, int] = {
    "invalid_argument": INVALID_PARAMS,
    "not_found": INVALID_PARAMS,
    "resource_not_found": RESOURCE_NOT_FOUND,
    "failed_precondition": -32004,
    "unavailable": -32006,
    "internal": INTERNAL_ERROR,
}

# Default server error code for unmapped error codes
DEFAULT_SERVER_ERROR = -32000

# =============================================================================
# MCP Protocol Constants
# =============================================================================

LATEST_PROTOCOL_VERSION = "2025-06-18"
SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")

METHOD_INITIALIZE = "initialize"
METHOD_INITIALIZED = "notifications/initialized"
METHOD_PING = "ping"
METHOD_TOOLS_LIST = "tools/list"
METHOD_TOOLS_CALL = "tools/call"
METHOD_RESOURCES_LIST = "resources/list"
METHOD_RESOURCE_TEMPLATES_LIST = "resources/templates/list"
METHOD_RESOURCES_READ = "resources/read"
METHOD_PROMPTS_LIST = "prompts/list"
METHOD_PROMPTS_GET = "prompts/get"


def negotiate_protocol_version(requested: Any) -> str:
    """Echo a supported requested version, otherwise answer with the latest."""
    if isinstance(requested, str) and requested in SUPPORTED_PROTOCOL_VERSIONS:
        return requested
    return LATEST_PROTOCOL_VERSION


# =============================================================================
# Data Classes
# =============================================================================


class JSONRPCError(Exception):
    """
    Represents a JSON-RPC 2.0 error object.

    This class is both an Exception (so it can be raised) and a data container
    for JSON-RPC error information.

    Attributes:
        code: Integer error code (per JSON-RPC 2.0 spec).
        message: Human-readable error message.
        data: Optional structured error data.
    """

    def __init__(
        self,
        code: int,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        """Convert the error to a dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.data is not None:
            result["data"] = self.data
        return result

    def __repr__(self) -> str:
        return (
            f"JSONRPCError(code={self.code}, "
            f"message={self.message!r}, "
            f"data={self.data!r})"
        )


@dataclass
class JSONRPCRequest:
    """
    Represents a parsed JSON-RPC 2.0 request or notification.

    Attributes:
        jsonrpc: Protocol version (must be "2.0").
        id: Request identifier (string or number, None for notifications).
        method: The MCP method to invoke.
        params: Parameters for the method (dict or empty dict).
    """

    jsonrpc: str
    id: str | int | None
    method: str
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def is_notification(self) -> bool:
        """Check if this is a notification (no id field)."""
        return self.id is None


@dataclass
class JSONRPCResponse:
    """
    Represents a JSON-RPC 2.0 response.

    Either result or error must be present, but not both.
    """

    jsonrpc: str
    id: str | int | None
    result: Any | None = None
    error: JSONRPCError | None = None

    @property
    def is_error(self) -> bool:
        """Check if this is an error response."""
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert the response to a dictionary for JSON serialization."""
        response: dict[str, Any] = {
            "jsonrpc": self.jsonrpc,
            "id": self.id,
        }
        if self.error is not None:
            response["error"] = self.error.to_dict()
        else:
            response["result"] = self.result
        return response

    def to_json(self) -> str:
        """Serialize the response to a compact JSON string."""
        return json.dumps(self.to_dict(), separators=(",", ":"))


# =============================================================================
# Request Parsing
# =============================================================================


def decode_json(request_json: str | bytes) -> Any:
    """
    Decode raw JSON text.

    Raises:
        JSONRPCError: With PARSE_ERROR if the text is not valid JSON.
    """
    try:
        return json.loads(request_json)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        detail = e.msg if isinstance(e, json.JSONDecodeError) else "UTF-8 required"
        raise JSONRPCError(
            code=PARSE_ERROR,
            message=f"Parse error: Invalid JSON - {detail}",
        ) from e


def is_response_message(data: Any) -> bool:
    """Check whether a decoded message is a client-sent response."""
    return (
        isinstance(data, dict)
        and "method" not in data
        and ("result" in data or "error" in data)
    )


def parse_message(data: Any) -> JSONRPCRequest:
    """
    Validate a decoded JSON value as a JSON-RPC 2.0 request.

    Args:
        data: Decoded JSON value.

    Returns:
        Parsed JSONRPCRequest object.

    Raises:
        JSONRPCError: If the request is invalid.
    """
    if not isinstance(data, dict):
        raise JSONRPCError(
            code=INVALID_REQUEST,
            message="Invalid Request: Request must be a JSON object",
        )

    jsonrpc = data.get("jsonrpc")
    if jsonrpc is None:
        raise JSONRPCError(
            code=INVALID_REQUEST,
            message="Invalid Request: Missing 'jsonrpc' field",
        )
    if jsonrpc != "2.0":
        raise JSONRPCError(
            code=INVALID_REQUEST,
            message=f"Invalid Request: jsonrpc must be '2.0', got '{jsonrpc}'",
        )

    method = data.get("method")
    if method is None:
        raise JSONRPCError(
            code=INVALID_REQUEST,
            message="Invalid Request: Missing 'method' field",
        )
    if not isinstance(method, str) or not method:
        raise JSONRPCError(
            code=INVALID_REQUEST,
            message="Invalid Request: 'method' must be a non-empty string",
        )

    request_id = data.get("id")
    if request_id is not None and (
        isinstance(request_id, bool) or not isinstance(request_id, (str, int))
    ):
        raise JSONRPCError(
            code=INVALID_REQUEST,
            message="Invalid Request: 'id' must be a string or integer",
        )

    params = data.get("params")
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise JSONRPCError(
            code=INVALID_PARAMS,
            message="Invalid params: 'params' must be an object",
        )

    return JSONRPCRequest(
        jsonrpc="2.0",
        id=request_id,
        method=method,
        params=params,
    )


def parse_request(request_json: str | bytes) -> JSONRPCRequest:
    """
    Parse a JSON-RPC 2.0 request from a JSON string.

    Example:
        >>> request = parse_request('{"jsonrpc":"2.0","id":"1","method":"tools/list"}')
        >>> print(request.method)
        tools/list
    """
    return parse_message(decode_json(request_json))


def is_initialize_request(data: Any) -> bool:
    """Check whether a decoded message (or batch) carries an initialize request."""
    if isinstance(data, list):
        return any(is_initialize_request(item) for item in data)
    return (
        isinstance(data, dict)
        and data.get("jsonrpc") == "2.0"
        and data.get("method") == METHOD_INITIALIZE
        and data.get("id") is not None
    )


# =============================================================================
# Response Formatting
# =============================================================================


def format_success_response(
    request_id: str | int | None,
    result: Any,
) -> JSONRPCResponse:
    """
    Format a successful JSON-RPC 2.0 response.

    Example:
        >>> response = format_success_response("req-1", {"tools": []})
        >>> print(response.to_json())
        {"jsonrpc":"2.0","id":"req-1","result":{"tools":[]}}
    """
    return JSONRPCResponse(
        jsonrpc="2.0",
        id=request_id,
        result=result,
        error=None,
    )


def format_error_response(
    request_id: str | int | None,
    error: JSONRPCError,
) -> JSONRPCResponse:
    """Format a JSON-RPC 2.0 error response."""
    return JSONRPCResponse(
        jsonrpc="2.0",
        id=request_id,
        result=None,
        error=error,
    )


# =============================================================================
# ToolError to JSON-RPC Error Mapping
# =============================================================================


def tool_error_to_jsonrpc_error(tool_error: ToolError) -> JSONRPCError:
    """
    Convert a ToolError to a JSONRPCError.

    Example:
        >>> from mcp_businessmap.errors import InvalidArgumentError
        >>> err = InvalidArgumentError(message="board_id is required")
        >>> tool_error_to_jsonrpc_error(err).code
        -32602
    """
    jsonrpc_code = ERROR_CODE_MAP.get(tool_error.error_code, DEFAULT_SERVER_ERROR)

    return JSONRPCError(
        code=jsonrpc_code,
        message=tool_error.message,
        data=tool_error.to_dict(),
    )


def create_method_not_found_error(method: str) -> JSONRPCError:
    """Create a "Method not found" error for an unknown MCP method."""
    return JSONRPCError(
        code=METHOD_NOT_FOUND,
        message=f"Method not found: {method}",
        data={"method": method},
    )


def create_internal_error(
    message: str, details: dict[str, Any] | None = None
) -> JSONRPCError:
    """Create an internal error for unexpected exceptions."""
    return JSONRPCError(
        code=INTERNAL_ERROR,
        message=message,
        data={
            "error_code": "internal",
            "message": message,
            "details": details or {},
        },
    )
