"""
MCP dispatch for the BusinessMap MCP Server.

This module implements:
- DispatchContext: one MCP protocol endpoint (registry binding plus its own
  upstream client). HTTP sessions each own one; stdio uses a single one.
- DispatchContextFactory: builds dispatch contexts from the configuration.
- process_request(): raw JSON text in, raw JSON text out (batches included).
- StdioServer: line-delimited JSON-RPC over stdin/stdout.
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import TYPE_CHECKING, Any, TextIO

from mcp_businessmap.client import BusinessMapClient
from mcp_businessmap.context import ToolContext
from mcp_businessmap.errors import FailedPreconditionError, InvalidArgumentError, ToolError
from mcp_businessmap.logging import get_logger
from mcp_businessmap.protocol import (
    INVALID_REQUEST,
    METHOD_INITIALIZE,
    METHOD_INITIALIZED,
    METHOD_PING,
    METHOD_PROMPTS_GET,
    METHOD_PROMPTS_LIST,
    METHOD_RESOURCE_TEMPLATES_LIST,
    METHOD_RESOURCES_LIST,
    METHOD_RESOURCES_READ,
    METHOD_TOOLS_CALL,
    METHOD_TOOLS_LIST,
    PARSE_ERROR,
    JSONRPCError,
    JSONRPCRequest,
    create_internal_error,
    create_method_not_found_error,
    decode_json,
    format_error_response,
    format_success_response,
    is_response_message,
    negotiate_protocol_version,
    parse_message,
    tool_error_to_jsonrpc_error,
)

if TYPE_CHECKING:
    import httpx

    from mcp_businessmap.config import AppConfig
    from mcp_businessmap.routing import OperationRegistry

logger = get_logger(__name__)

# Methods accepted before the initialize handshake completes
_PRE_INITIALIZE_METHODS = frozenset({METHOD_INITIALIZE, METHOD_INITIALIZED, METHOD_PING})

SERVER_INSTRUCTIONS = (
    "Tools for the BusinessMap (Kanbanize) API: workspaces, boards, cards, "
    "users and workflows."
)


class DispatchContext:
    """
    Serves MCP methods for one client.

    Attributes:
        registry: Shared operation registry.
        client: Upstream client owned by this context.
        session_id: Owning HTTP session, assigned once the handshake succeeds.
        initialized: Whether ``initialize`` has been answered.
        protocol_version: Negotiated protocol version.
    """

    def __init__(
        self,
        registry: OperationRegistry,
        client: BusinessMapClient,
        *,
        server_name: str,
        server_version: str,
        default_workspace_id: int | None = None,
    ) -> None:
        self.registry = registry
        self.client = client
        self.server_name = server_name
        self.server_version = server_version
        self.default_workspace_id = default_workspace_id
        self.session_id: str | None = None
        self.initialized = False
        self.protocol_version: str | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def aclose(self) -> None:
        """Release the upstream connection pool. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        await self.client.aclose()

    # -------------------------------------------------------------------------
    # Message handling
    # -------------------------------------------------------------------------

    async def handle_message(self, data: Any) -> dict[str, Any] | None:
        """
        Handle one decoded JSON-RPC message.

        Returns:
            The response as a dict, or None for notifications and
            client-sent responses.
        """
        if is_response_message(data):
            return None

        request_id: str | int | None = None
        is_notification = False
        if isinstance(data, dict):
            request_id = data.get("id")
            is_notification = "id" not in data or request_id is None

        try:
            request = parse_message(data)
            result = await self._dispatch(request)
            if request.is_notification:
                return None
            return format_success_response(request.id, result).to_dict()

        except JSONRPCError as e:
            if is_notification and isinstance(data, dict) and "method" in data:
                logger.warning(
                    "Invalid notification ignored",
                    extra={"error": e.message, "session_id": self.session_id},
                )
                return None
            return format_error_response(_safe_id(request_id), e).to_dict()

        except ToolError as e:
            if is_notification:
                logger.warning(
                    "Error processing notification",
                    extra={"error": e.message, "session_id": self.session_id},
                )
                return None
            return format_error_response(
                request_id, tool_error_to_jsonrpc_error(e)
            ).to_dict()

        except Exception as e:
            logger.exception(
                "Unexpected error processing request",
                extra={"request_id": request_id, "session_id": self.session_id},
            )
            if is_notification:
                return None
            error = create_internal_error(
                message=f"Internal server error: {type(e).__name__}",
                details={"exception": str(e)},
            )
            return format_error_response(request_id, error).to_dict()

    async def handle_payload(self, data: Any) -> dict[str, Any] | list[dict[str, Any]] | None:
        """
        Handle a decoded message or batch.

        Returns:
            A response dict, a list of responses for a batch, or None when
            nothing needs answering.
        """
        if isinstance(data, list):
            if not data:
                error = JSONRPCError(INVALID_REQUEST, "Invalid Request: Empty batch")
                return format_error_response(None, error).to_dict()
            responses = []
            for item in data:
                response = await self.handle_message(item)
                if response is not None:
                    responses.append(response)
            return responses or None
        return await self.handle_message(data)

    # -------------------------------------------------------------------------
    # MCP methods
    # -------------------------------------------------------------------------

    async def _dispatch(self, request: JSONRPCRequest) -> Any:
        method = request.method
        if not self.initialized and method not in _PRE_INITIALIZE_METHODS:
            raise FailedPreconditionError(
                "Server not initialized", details={"method": method}
            )

        if method == METHOD_INITIALIZE:
            return self._initialize(request.params)
        if method == METHOD_INITIALIZED:
            return None
        if method == METHOD_PING:
            return {}
        if method == METHOD_TOOLS_LIST:
            return {"tools": [tool.to_dict() for tool in self.registry.list_tools()]}
        if method == METHOD_TOOLS_CALL:
            name = _require_str(request.params, "name")
            arguments = request.params.get("arguments") or {}
            if not isinstance(arguments, dict):
                raise InvalidArgumentError("'arguments' must be an object")
            ctx = self._context(request, name)
            logger.debug("Calling tool", extra=ctx.to_dict())
            return await self.registry.call_tool(name, ctx, arguments)
        if method == METHOD_RESOURCES_LIST:
            return {"resources": [r.to_dict() for r in self.registry.list_resources()]}
        if method == METHOD_RESOURCE_TEMPLATES_LIST:
            return {
                "resourceTemplates": [
                    r.to_dict() for r in self.registry.list_resource_templates()
                ]
            }
        if method == METHOD_RESOURCES_READ:
            uri = _require_str(request.params, "uri")
            return await self.registry.read_resource(uri, self._context(request, uri))
        if method == METHOD_PROMPTS_LIST:
            return {"prompts": [p.to_dict() for p in self.registry.list_prompts()]}
        if method == METHOD_PROMPTS_GET:
            name = _require_str(request.params, "name")
            return self.registry.get_prompt(name, request.params.get("arguments"))

        if request.is_notification:
            logger.debug("Ignoring unknown notification", extra={"method": method})
            return None
        raise create_method_not_found_error(method)

    def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        self.protocol_version = negotiate_protocol_version(params.get("protocolVersion"))
        self.initialized = True
        client_info = params.get("clientInfo") or {}
        logger.info(
            "Client initialized",
            extra={
                "protocol_version": self.protocol_version,
                "client_name": client_info.get("name") if isinstance(client_info, dict) else None,
                "session_id": self.session_id,
            },
        )
        return {
            "protocolVersion": self.protocol_version,
            "capabilities": {
                "tools": {"listChanged": False},
                "resources": {"subscribe": False, "listChanged": False},
                "prompts": {"listChanged": False},
            },
            "serverInfo": {"name": self.server_name, "version": self.server_version},
            "instructions": SERVER_INSTRUCTIONS,
        }

    def _context(self, request: JSONRPCRequest, name: str) -> ToolContext:
        return ToolContext.from_request(
            request,
            self.client,
            tool_name=name,
            session_id=self.session_id,
            default_workspace_id=self.default_workspace_id,
            metadata={"protocol_version": self.protocol_version},
        )


def _require_str(params: dict[str, Any], key: str) -> str:
    value = params.get(key)
    if not isinstance(value, str) or not value:
        raise InvalidArgumentError(
            f"Parameter '{key}' is required", details={"parameter": key}
        )
    return value


def _safe_id(request_id: Any) -> str | int | None:
    """Echo an ID only if it is a valid JSON-RPC ID."""
    if isinstance(request_id, bool) or not isinstance(request_id, (str, int)):
        return None
    return request_id


class DispatchContextFactory:
    """
    Builds a fresh DispatchContext (and upstream client) per session.

    Example:
        >>> factory = DispatchContextFactory(config, build_registry())
        >>> dispatcher = factory()
    """

    def __init__(
        self,
        config: AppConfig,
        registry: OperationRegistry,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self._http_transport = http_transport

    def __call__(self) -> DispatchContext:
        client = BusinessMapClient.from_config(
            self.config.upstream, transport=self._http_transport
        )
        return DispatchContext(
            self.registry,
            client,
            server_name=self.config.server.name,
            server_version=self.config.server.version,
            default_workspace_id=self.config.upstream.default_workspace_id,
        )


async def process_request(request_json: str | bytes, dispatcher: DispatchContext) -> str | None:
    """
    Process raw JSON-RPC text and return the response text.

    Args:
        request_json: A JSON-RPC message or batch.
        dispatcher: The dispatch context serving the client.

    Returns:
        JSON string containing the response(s), or None if there is nothing
        to send back.
    """
    try:
        data = decode_json(request_json)
    except JSONRPCError as e:
        return format_error_response(None, e).to_json()

    response = await dispatcher.handle_payload(data)
    if response is None:
        return None
    return json.dumps(response, separators=(",", ":"))


class StdioServer:
    """
    MCP server that communicates via JSON-RPC 2.0 over stdio.

    Each line on stdin is one JSON-RPC message or batch; each response is
    written to stdout as one line.

    Attributes:
        dispatcher: The single dispatch context for the process.
        running: Whether the server is currently running.
    """

    def __init__(
        self,
        dispatcher: DispatchContext,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
        reader: asyncio.StreamReader | None = None,
    ) -> None:
        """
        Initialize the stdio server.

        Args:
            dispatcher: Dispatch context serving stdin.
            stdin: Optional stdin stream. Uses sys.stdin if not provided.
            stdout: Optional stdout stream. Uses sys.stdout if not provided.
            reader: Pre-connected reader; skips attaching to stdin.
        """
        self.dispatcher = dispatcher
        self._stdin = stdin if stdin is not None else sys.stdin
        self._stdout = stdout if stdout is not None else sys.stdout
        self._reader = reader
        self.running = False

    async def _connect_stdin(self) -> asyncio.StreamReader:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        await loop.connect_read_pipe(lambda: protocol, self._stdin)
        return reader

    async def run(self) -> None:
        """
        Run the server until stdin is closed or stop() is called.
        """
        self.running = True
        logger.info(
            "MCP stdio server starting",
            extra={"tools_count": len(self.dispatcher.registry)},
        )

        try:
            reader = self._reader or await self._connect_stdin()

            while self.running:
                line = await reader.readline()
                if not line:
                    # EOF reached
                    break

                try:
                    request_json = line.decode("utf-8").strip()
                except UnicodeDecodeError as e:
                    logger.warning(
                        "Invalid UTF-8 encoding in request",
                        extra={"error": str(e)},
                    )
                    error = JSONRPCError(PARSE_ERROR, "Parse error: Invalid JSON - UTF-8 required")
                    self._write_response(format_error_response(None, error).to_json())
                    continue

                if not request_json:
                    continue

                try:
                    response = await process_request(request_json, self.dispatcher)
                except Exception as e:
                    logger.exception("Error in server loop")
                    error = create_internal_error(str(e))
                    response = format_error_response(None, error).to_json()

                if response:
                    self._write_response(response)

        finally:
            self.running = False
            await self.dispatcher.aclose()
            logger.info("MCP stdio server stopped")

    def stop(self) -> None:
        """Stop the server gracefully."""
        self.running = False

    def _write_response(self, response_json: str) -> None:
        self._stdout.write(response_json + "\n")
        self._stdout.flush()
