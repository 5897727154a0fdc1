"""
Operation context for the BusinessMap MCP Server.

This module defines the ToolContext dataclass that carries the context of a
single MCP operation call: which session it belongs to, the request ID, the
session's upstream client and timestamps.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mcp_businessmap.client import BusinessMapClient
    from mcp_businessmap.protocol import JSONRPCRequest


@dataclass
class ToolContext:
    """
    Encapsulates the context of a single operation call.

    This context is passed to every tool, resource and prompt handler.

    Attributes:
        tool_name: Name of the invoked operation (e.g., "get_card") or the
            MCP method for non-tool requests.
        client: Upstream client owned by the calling session.
        request_id: Request identifier from the JSON-RPC request.
        session_id: HTTP session identifier, or None for stdio.
        default_workspace_id: Workspace used when arguments omit one.
        timestamp: When the request was received (UTC).
        metadata: Additional context (e.g., negotiated protocol version).
    """

    tool_name: str
    client: BusinessMapClient
    request_id: str | int | None = None
    session_id: str | None = None
    default_workspace_id: int | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)

    def resolve_workspace_id(self, workspace_id: int | None) -> int | None:
        """Return the explicit workspace ID, falling back to the default."""
        if workspace_id is not None:
            return workspace_id
        return self.default_workspace_id

    def to_dict(self) -> dict[str, Any]:
        """
        Convert ToolContext to a dictionary for logging.

        The client is deliberately left out.
        """
        return {
            "tool_name": self.tool_name,
            "request_id": self.request_id,
            "session_id": self.session_id,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_request(
        cls,
        request: JSONRPCRequest,
        client: BusinessMapClient,
        *,
        tool_name: str | None = None,
        session_id: str | None = None,
        default_workspace_id: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ToolContext:
        """
        Create a ToolContext from a parsed JSON-RPC request.

        Args:
            request: The parsed JSONRPCRequest.
            client: The session's upstream client.
            tool_name: Operation name. Defaults to the request method.
            session_id: Owning session, if any.
            default_workspace_id: Configured default workspace.
            metadata: Optional additional metadata.

        Returns:
            A ToolContext instance for the request.
        """
        return cls(
            tool_name=tool_name or request.method,
            client=client,
            request_id=request.id,
            session_id=session_id,
            default_workspace_id=default_workspace_id,
            timestamp=datetime.now(UTC),
            metadata=metadata or {},
        )
