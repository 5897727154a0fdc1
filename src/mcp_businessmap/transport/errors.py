"""
Errors raised by the HTTP transport layer.

Each error carries the HTTP status the endpoint answers with; the endpoint
renders them as ``{"error": "<message>"}`` bodies.
"""

from __future__ import annotations

from typing import Any


class TransportError(Exception):
    """Base class for errors surfaced as HTTP error responses."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class SessionNotFoundError(TransportError):
    """The request names a session that is not (or no longer) registered."""

    status_code = 404
    default_message = "Session not found"


class SessionClosedError(TransportError):
    """The session's transport handle was closed while the request was in flight."""

    status_code = 404
    default_message = "Session not found"


class MissingSessionIdError(TransportError):
    """A non-initializing request arrived without a session ID."""

    status_code = 400
    default_message = "Bad Request: No valid session ID provided"


class HandshakeError(TransportError):
    """The initialize handshake for a new session failed."""

    status_code = 500
    default_message = "Failed to initialize session"


class InvalidStateTransitionError(Exception):
    """A session lifecycle transition that the state machine does not allow."""

    def __init__(self, session_id: str, current: Any, target: Any) -> None:
        self.session_id = session_id
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid session state transition for {session_id}: "
            f"{current.value} -> {target.value}"
        )


class ServerShuttingDownError(TransportError):
    """A session tried to open after shutdown started closing every session."""

    status_code = 503
    default_message = "Server is shutting down"
