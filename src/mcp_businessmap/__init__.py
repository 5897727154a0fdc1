"""
BusinessMap MCP Server.

This package exposes the BusinessMap (Kanbanize) REST API as MCP tools,
resources and prompts over JSON-RPC 2.0, served either on stdio or on a
session-oriented streamable HTTP endpoint.
"""

__version__ = "1.0.0"
