"""
Origin/Host allow-list enforcement for the HTTP transport.

GatekeeperMiddleware is a plain ASGI middleware composed in front of the
application. Requests to protected paths whose ``Origin`` or ``Host``
header is not allowed are answered with 403 before they reach any session
state.

Rules:
- A request without an ``Origin`` header is not a browser cross-origin
  request and passes the origin check.
- A request without a ``Host`` header is rejected.
- An allowed origin or host of the form ``name:*`` accepts ``name`` on any
  port.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from starlette.datastructures import Headers
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from mcp_businessmap.logging import get_logger

if TYPE_CHECKING:
    from mcp_businessmap.config import SecurityConfig

logger = get_logger(__name__)

INVALID_ORIGIN_MESSAGE = "Forbidden: invalid Origin header"
INVALID_HOST_MESSAGE = "Forbidden: invalid Host header"


def _normalize(value: str) -> str:
    return value.strip().rstrip("/").lower()


@dataclass(frozen=True)
class AllowListPolicy:
    """
    Immutable allow-lists, loaded once at startup.

    Attributes:
        allowed_origins: Accepted ``Origin`` values, e.g. ``http://localhost``.
        allowed_hosts: Accepted ``Host`` values, e.g. ``localhost:3000``.
    """

    allowed_origins: frozenset[str]
    allowed_hosts: frozenset[str]

    @classmethod
    def create(
        cls, allowed_origins: Iterable[str], allowed_hosts: Iterable[str]
    ) -> AllowListPolicy:
        return cls(
            allowed_origins=frozenset(_normalize(o) for o in allowed_origins if o.strip()),
            allowed_hosts=frozenset(_normalize(h) for h in allowed_hosts if h.strip()),
        )

    @classmethod
    def from_config(cls, config: SecurityConfig) -> AllowListPolicy:
        return cls.create(config.allowed_origins, config.allowed_hosts or [])

    def is_origin_allowed(self, origin: str | None) -> bool:
        if origin is None:
            return True
        return _matches(_normalize(origin), self.allowed_origins)

    def is_host_allowed(self, host: str | None) -> bool:
        if not host:
            return False
        return _matches(_normalize(host), self.allowed_hosts)


def _matches(value: str, allowed: frozenset[str]) -> bool:
    """Exact match, or ``<name>:*`` when ``value`` ends in a numeric port."""
    if value in allowed:
        return True
    name, sep, port = value.rpartition(":")
    # "[::1]" and "http://host" have colons but no port
    if sep and port.isdigit():
        return f"{name}:*" in allowed
    return False


class GatekeeperMiddleware:
    """
    ASGI middleware rejecting requests with a disallowed Origin or Host.

    Example:
        >>> app.add_middleware(
        ...     GatekeeperMiddleware,
        ...     policy=AllowListPolicy.from_config(config.security),
        ...     protected_paths=("/mcp",),
        ... )
    """

    def __init__(
        self,
        app: ASGIApp,
        policy: AllowListPolicy,
        protected_paths: Iterable[str] = ("/mcp",),
    ) -> None:
        self.app = app
        self.policy = policy
        self.protected_paths = tuple(protected_paths)

    def _is_protected(self, path: str) -> bool:
        return any(
            path == protected or path.startswith(protected.rstrip("/") + "/")
            for protected in self.protected_paths
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self._is_protected(scope.get("path", "")):
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        origin = headers.get("origin")
        host = headers.get("host")

        if not self.policy.is_origin_allowed(origin):
            logger.warning("Rejected request with disallowed Origin", extra={"origin": origin})
            response = JSONResponse({"error": INVALID_ORIGIN_MESSAGE}, status_code=403)
            await response(scope, receive, send)
            return

        if not self.policy.is_host_allowed(host):
            logger.warning("Rejected request with disallowed Host", extra={"host": host})
            response = JSONResponse({"error": INVALID_HOST_MESSAGE}, status_code=403)
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)
