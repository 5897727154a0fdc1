"""
Utility tools for the BusinessMap MCP Server.

- health_check: Check connectivity to the BusinessMap API
- get_api_info: Describe the configured API endpoint
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from mcp_businessmap.context import ToolContext
from mcp_businessmap.routing import Tool
from mcp_businessmap.tools.base import success_response, text_response


class NoParams(BaseModel):
    pass


async def handle_health_check(ctx: ToolContext, _params: NoParams) -> dict[str, Any]:
    healthy = await ctx.client.health_check()
    if healthy:
        return text_response("✅ BusinessMap API is healthy")
    result = text_response("❌ BusinessMap API is not responding")
    result["isError"] = True
    return result


async def handle_get_api_info(ctx: ToolContext, _params: NoParams) -> dict[str, Any]:
    info = await ctx.client.get_api_info()
    return success_response(info)


TOOLS: tuple[Tool, ...] = (
    Tool(
        name="health_check",
        title="Health Check",
        description="Check the connection to the BusinessMap API",
        input_model=NoParams,
        handler=handle_health_check,
        action="checking API health",
    ),
    Tool(
        name="get_api_info",
        title="Get API Info",
        description="Get information about the BusinessMap API connection",
        input_model=NoParams,
        handler=handle_get_api_info,
        action="getting API info",
    ),
)
