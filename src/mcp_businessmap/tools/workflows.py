"""
Workflow tools for the BusinessMap MCP Server.

- get_workflow_cycle_time_columns
- get_workflow_effective_cycle_time_columns
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from mcp_businessmap.context import ToolContext
from mcp_businessmap.routing import Tool
from mcp_businessmap.tools.base import success_response


class WorkflowParams(BaseModel):
    board_id: int = Field(description="The ID of the board")
    workflow_id: int = Field(description="The ID of the workflow")


async def handle_get_workflow_cycle_time_columns(
    ctx: ToolContext, params: WorkflowParams
) -> dict[str, Any]:
    columns = await ctx.client.get_workflow_cycle_time_columns(
        params.board_id, params.workflow_id
    )
    return success_response(columns)


async def handle_get_workflow_effective_cycle_time_columns(
    ctx: ToolContext, params: WorkflowParams
) -> dict[str, Any]:
    columns = await ctx.client.get_workflow_effective_cycle_time_columns(
        params.board_id, params.workflow_id
    )
    return success_response(columns)


TOOLS: tuple[Tool, ...] = (
    Tool(
        name="get_workflow_cycle_time_columns",
        title="Get Workflow Cycle Time Columns",
        description="Get the columns configured to count towards cycle time for a workflow",
        input_model=WorkflowParams,
        handler=handle_get_workflow_cycle_time_columns,
        action="getting workflow cycle time columns",
    ),
    Tool(
        name="get_workflow_effective_cycle_time_columns",
        title="Get Workflow Effective Cycle Time Columns",
        description=(
            "Get the columns that effectively count towards cycle time for a workflow"
        ),
        input_model=WorkflowParams,
        handler=handle_get_workflow_effective_cycle_time_columns,
        action="getting workflow effective cycle time columns",
    ),
)
