"""
Error types for the BusinessMap MCP Server.

This module defines the ToolError base class and subclasses for domain-specific errors.
Operation handlers express failures with ToolError (or subclasses) instead of building
JSON-RPC error objects directly; the protocol layer maps them to JSON-RPC errors.

Errors raised while talking to the BusinessMap API are normalized into
UpstreamError with a consistent message prefix before they leave the client.
"""

from __future__ import annotations

from typing import Any

# Message prefixes applied when normalizing upstream failures
UPSTREAM_ERROR_PREFIX = "BusinessMap API Error"
NETWORK_ERROR_PREFIX = "Network Error"


class ConfigurationError(Exception):
    """Raised when the startup configuration is invalid. Always fatal."""


class ToolError(Exception):
    """
    Base exception class for MCP operation errors.

    ToolError instances are caught at the dispatch layer and mapped to JSON-RPC
    errors, or to an ``isError`` tool result for ``tools/call``.

    Attributes:
        error_code: Internal error code string (e.g., "invalid_argument",
            "not_found", "unavailable", "failed_precondition", "internal").
        message: Human-readable error message.
        details: Optional structured details (e.g., parameter values, context).

    Example:
        >>> raise ToolError(
        ...     error_code="invalid_argument",
        ...     message="board_id must be an integer",
        ...     details={"board_id": "abc"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize a ToolError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidArgumentError(ToolError):
    """
    Error raised when an operation receives invalid input arguments.

    Maps to the "invalid_argument" error code (JSON-RPC -32602).
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidArgumentError."""
        super().__init__(
            error_code="invalid_argument", message=message, details=details
        )


class NotFoundError(ToolError):
    """
    Error raised when a named tool, prompt or resource does not exist.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a NotFoundError."""
        super().__init__(error_code="not_found", message=message, details=details)


class ResourceNotFoundError(ToolError):
    """Error raised when a resource URI matches no registered resource."""

    def __init__(self, uri: str) -> None:
        """Initialize a ResourceNotFoundError."""
        super().__init__(
            error_code="resource_not_found",
            message=f"Resource not found: {uri}",
            details={"uri": uri},
        )


class UnavailableError(ToolError):
    """
    Error raised when a required service is unavailable.

    Maps to the "unavailable" error code.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an UnavailableError."""
        super().__init__(error_code="unavailable", message=message, details=details)


class UpstreamError(UnavailableError):
    """
    Error raised when a call to the BusinessMap API fails.

    The message is already normalized, e.g.
    ``"BusinessMap API Error: Card not found"`` or
    ``"Network Error: connection refused"``.

    Attributes:
        status_code: HTTP status returned by the API, or None when no
            response was received.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize an UpstreamError."""
        merged = {"status_code": status_code}
        merged.update(details or {})
        super().__init__(message=message, details=merged)
        self.status_code = status_code

    @classmethod
    def from_api_message(
        cls, message: str, status_code: int | None = None
    ) -> UpstreamError:
        """Build an error for a failed API response."""
        return cls(f"{UPSTREAM_ERROR_PREFIX}: {message}", status_code=status_code)

    @classmethod
    def from_network_failure(cls, message: str) -> UpstreamError:
        """Build an error for a request that never got a response."""
        return cls(f"{NETWORK_ERROR_PREFIX}: {message}")


class FailedPreconditionError(ToolError):
    """
    Error raised when a precondition for the operation is not met.

    Used for protocol misuse such as calling tools before ``initialize``.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a FailedPreconditionError."""
        super().__init__(
            error_code="failed_precondition", message=message, details=details
        )


class InternalError(ToolError):
    """
    Error raised for unexpected internal errors.

    This error maps to the "internal" error code and should be used for
    unexpected exceptions that should be logged with full stack traces.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InternalError."""
        super().__init__(error_code="internal", message=message, details=details)
