"""
Streamable HTTP transport for the BusinessMap MCP Server.

This package multiplexes many client sessions over one listening port.

Components:
- sessions: Session store and lifecycle owner
- streamable_http: Per-session transport handle
- reaper: Background eviction of idle sessions
- gatekeeper: Origin/Host allow-list middleware
- endpoint: Starlette application and session routing
"""

from mcp_businessmap.transport.endpoint import MCPEndpoint, create_app
from mcp_businessmap.transport.gatekeeper import AllowListPolicy, GatekeeperMiddleware
from mcp_businessmap.transport.reaper import IdleReaper
from mcp_businessmap.transport.sessions import (
    Session,
    SessionManager,
    SessionState,
    SessionStore,
)
from mcp_businessmap.transport.streamable_http import (
    SESSION_ID_HEADER,
    StreamableHTTPTransport,
)

__all__ = [
    "SESSION_ID_HEADER",
    "AllowListPolicy",
    "GatekeeperMiddleware",
    "IdleReaper",
    "MCPEndpoint",
    "Session",
    "SessionManager",
    "SessionState",
    "SessionStore",
    "StreamableHTTPTransport",
    "create_app",
]
