"""
Per-session transport handle for the streamable HTTP transport.

A StreamableHTTPTransport is bound 1:1 to a session. It serves the three
verbs of the MCP endpoint for that session:
- POST: one JSON-RPC message or a batch, answered with JSON
  (202 with an empty body when nothing needs answering)
- GET: a ``text/event-stream`` channel for server-initiated messages.
  The server answers every request inline on its POST, so the channel
  normally stays idle until the session closes; ``send`` is the only way
  to put an event on it
- DELETE: client-initiated termination
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TYPE_CHECKING, Any

from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse

from mcp_businessmap.logging import get_logger
from mcp_businessmap.protocol import (
    METHOD_INITIALIZE,
    JSONRPCError,
    decode_json,
    format_error_response,
)
from mcp_businessmap.transport.errors import HandshakeError, SessionClosedError

if TYPE_CHECKING:
    from mcp_businessmap.server import DispatchContext

logger = get_logger(__name__)

SESSION_ID_HEADER = "mcp-session-id"

TerminateHook = Callable[[], Awaitable[bool]]


def _initialize_response(payload: Any, response: Any) -> dict[str, Any] | None:
    """Pick the response to the initialize request out of a (batch) reply."""
    if isinstance(payload, list):
        ids = [
            item.get("id")
            for item in payload
            if isinstance(item, dict) and item.get("method") == METHOD_INITIALIZE
        ]
        responses = response if isinstance(response, list) else []
        return next((r for r in responses if r.get("id") in ids), None)
    return response if isinstance(response, dict) else None


class StreamableHTTPTransport:
    """
    Transport handle for one session.

    Requests are processed one at a time in receipt order under a
    per-handle lock. Once closed, every request raises SessionClosedError.

    Attributes:
        session_id: The owning session's identifier.
        dispatcher: The owning session's dispatch context.
    """

    def __init__(
        self,
        session_id: str,
        dispatcher: DispatchContext,
        *,
        on_terminate: TerminateHook | None = None,
    ) -> None:
        self.session_id = session_id
        self.dispatcher = dispatcher
        self._on_terminate = on_terminate
        self._lock = asyncio.Lock()
        self._outbox: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._stream_open = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def stream_open(self) -> bool:
        return self._stream_open

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError()

    # -------------------------------------------------------------------------
    # Message processing
    # -------------------------------------------------------------------------

    async def process(self, payload: Any) -> dict[str, Any] | list[dict[str, Any]] | None:
        """
        Dispatch a decoded message or batch in order.

        Raises:
            SessionClosedError: If the handle is closed.
        """
        self._ensure_open()
        async with self._lock:
            self._ensure_open()
            return await self.dispatcher.handle_payload(payload)

    async def handshake(self, payload: Any) -> dict[str, Any] | list[dict[str, Any]]:
        """
        Run the initialize handshake for a new session.

        Returns:
            The reply to send back to the client.

        Raises:
            HandshakeError: If initialize produced no result.
        """
        response = await self.process(payload)
        init_response = _initialize_response(payload, response)
        if init_response is None:
            raise HandshakeError("Initialize request produced no response")
        if "error" in init_response:
            raise HandshakeError(
                f"Initialize failed: {init_response['error'].get('message', 'unknown error')}"
            )
        return response

    async def send(self, message: dict[str, Any]) -> None:
        """
        Queue a server-initiated message for the event stream.

        Raises:
            SessionClosedError: If the handle is closed.
        """
        self._ensure_open()
        await self._outbox.put(message)

    async def event_stream(self) -> AsyncIterator[str]:
        """
        Yield queued messages as SSE events until the handle closes.

        The stream slot is held from the first iteration until the generator
        finishes, so a response that is never sent does not hold it.
        """
        self._stream_open = True
        try:
            while True:
                message = await self._outbox.get()
                if message is None:
                    break
                yield f"event: message\ndata: {json.dumps(message, separators=(',', ':'))}\n\n"
        finally:
            self._stream_open = False

    async def close(self) -> None:
        """Close the event stream and refuse further requests."""
        if self._closed:
            return
        self._closed = True
        self._outbox.put_nowait(None)

    # -------------------------------------------------------------------------
    # HTTP verbs
    # -------------------------------------------------------------------------

    async def handle_request(self, request: Request) -> Response:
        """
        Serve one HTTP request for this session.

        Raises:
            SessionClosedError: If the handle is closed.
        """
        self._ensure_open()
        if request.method == "POST":
            return await self._handle_post(request)
        if request.method == "GET":
            return self._handle_get()
        if request.method == "DELETE":
            return await self._handle_delete()
        return JSONResponse({"error": "Method not allowed"}, status_code=405)

    async def _handle_post(self, request: Request) -> Response:
        body = await request.body()
        try:
            payload = decode_json(body)
        except JSONRPCError as e:
            return JSONResponse(format_error_response(None, e).to_dict(), status_code=400)

        response = await self.process(payload)
        headers = {SESSION_ID_HEADER: self.session_id}
        if response is None:
            return Response(status_code=202, headers=headers)
        return JSONResponse(response, headers=headers)

    def _handle_get(self) -> Response:
        if self._stream_open:
            return JSONResponse(
                {"error": "Conflict: Only one event stream is allowed per session"},
                status_code=409,
            )
        return StreamingResponse(
            self.event_stream(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                SESSION_ID_HEADER: self.session_id,
            },
        )

    async def _handle_delete(self) -> Response:
        if self._on_terminate is not None:
            await self._on_terminate()
        else:
            await self.close()
        logger.debug("Session terminated by client", extra={"session_id": self.session_id})
        return JSONResponse({"status": "closed"})
