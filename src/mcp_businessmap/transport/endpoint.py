"""
Network entry point of the streamable HTTP transport.

Routes:
- ``GET /health``: liveness probe
- ``POST|GET|DELETE <mcp_path>``: the MCP endpoint

Requests to the MCP endpoint are correlated to sessions through the
``mcp-session-id`` header:
- no header and an initialize request: a new session is created, its
  handshake run, and the new ID returned in the response header
- header naming a registered session: the request is forwarded to that
  session's transport handle
- header naming an unknown session: 404
- anything else: 400

Every error body is ``{"error": "<message>"}``. No exception raised while
handling a request escapes the handler.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from mcp_businessmap.logging import get_logger
from mcp_businessmap.protocol import JSONRPCError, decode_json, is_initialize_request
from mcp_businessmap.transport.errors import (
    MissingSessionIdError,
    SessionNotFoundError,
    TransportError,
)
from mcp_businessmap.transport.gatekeeper import AllowListPolicy, GatekeeperMiddleware
from mcp_businessmap.transport.reaper import IdleReaper
from mcp_businessmap.transport.sessions import Clock, Session, SessionManager
from mcp_businessmap.transport.streamable_http import SESSION_ID_HEADER

if TYPE_CHECKING:
    from mcp_businessmap.config import AppConfig
    from mcp_businessmap.server import DispatchContext

logger = get_logger(__name__)

DispatcherFactory = Callable[[], "DispatchContext"]


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


class MCPEndpoint:
    """
    Correlates MCP requests to sessions.

    Attributes:
        manager: Owner of the session lifecycle.
        dispatcher_factory: Builds an isolated dispatch context per session.
    """

    def __init__(self, manager: SessionManager, dispatcher_factory: DispatcherFactory) -> None:
        self.manager = manager
        self.dispatcher_factory = dispatcher_factory

    async def handle(self, request: Request) -> Response:
        """Serve one request to the MCP endpoint."""
        try:
            return await self._route(request)
        except TransportError as e:
            return _error(e.message, e.status_code)
        except Exception:
            logger.exception(
                "Unhandled error in MCP endpoint",
                extra={"method": request.method, "path": request.url.path},
            )
            return _error("Internal server error", 500)

    async def _route(self, request: Request) -> Response:
        session_id = request.headers.get(SESSION_ID_HEADER)

        if session_id:
            return await self._forward(session_id, request)

        if request.method == "POST":
            body = await request.body()
            try:
                payload = decode_json(body)
            except JSONRPCError as e:
                return _error(e.message, 400)
            if is_initialize_request(payload):
                return await self._initialize(payload)

        raise MissingSessionIdError()

    async def _forward(self, session_id: str, request: Request) -> Response:
        session = self.manager.get(session_id)
        if session is None:
            raise SessionNotFoundError()
        self.manager.touch(session)
        return await session.transport.handle_request(request)

    async def _initialize(self, payload: object) -> Response:
        dispatcher = self.dispatcher_factory()
        session: Session | None = None
        try:
            session = self.manager.create(dispatcher)
            response = await session.transport.handshake(payload)
            await self.manager.open(session)
        except Exception as e:
            logger.warning(
                "Session handshake failed",
                extra={
                    "session_id": session.session_id if session else None,
                    "error": str(e),
                },
            )
            if session is not None:
                await self.manager.discard(session)
            else:
                await dispatcher.aclose()
            if isinstance(e, TransportError):
                return _error(e.message, e.status_code)
            return _error("Failed to initialize session", 500)

        return JSONResponse(response, headers={SESSION_ID_HEADER: session.session_id})


async def health(request: Request) -> Response:
    """Liveness probe."""
    config: AppConfig = request.app.state.config
    return JSONResponse({"status": "ok", "version": config.server.version})


def create_app(
    config: AppConfig,
    dispatcher_factory: DispatcherFactory,
    *,
    manager: SessionManager | None = None,
    clock: Clock = time.monotonic,
) -> Starlette:
    """
    Build the HTTP application.

    The idle reaper runs for the lifetime of the application. On shutdown
    the reaper is stopped first, then every remaining session is closed.

    Args:
        config: Application configuration.
        dispatcher_factory: Builds a dispatch context per session.
        manager: Session manager. A new one is created if omitted.
        clock: Monotonic clock for session activity.

    Returns:
        The Starlette application.
    """
    manager = manager if manager is not None else SessionManager(clock=clock)
    reaper = IdleReaper(
        manager,
        idle_timeout_seconds=config.sessions.idle_timeout_seconds,
        interval_seconds=config.sessions.sweep_interval_seconds,
    )
    endpoint = MCPEndpoint(manager, dispatcher_factory)

    @asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncIterator[None]:
        reaper.start()
        logger.info(
            "HTTP transport started",
            extra={"mcp_path": config.server.mcp_path, "port": config.server.port},
        )
        try:
            yield
        finally:
            await reaper.stop()
            closed = await manager.close_all("shutdown")
            logger.info("HTTP transport stopped", extra={"closed_sessions": closed})

    middleware: list[Middleware] = []
    if config.security.dns_rebinding_protection:
        middleware.append(
            Middleware(
                GatekeeperMiddleware,
                policy=AllowListPolicy.from_config(config.security),
                protected_paths=(config.server.mcp_path,),
            )
        )

    app = Starlette(
        routes=[
            Route("/health", health, methods=["GET"]),
            Route(config.server.mcp_path, endpoint.handle, methods=["GET", "POST", "DELETE"]),
        ],
        middleware=middleware,
        lifespan=lifespan,
    )
    app.router.redirect_slashes = False
    app.state.config = config
    app.state.session_manager = manager
    app.state.reaper = reaper
    return app
