"""
Workspace tools for the BusinessMap MCP Server.

- list_workspaces: List all workspaces
- get_workspace: Get one workspace
- create_workspace: Create a workspace (mutating)
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from mcp_businessmap.context import ToolContext
from mcp_businessmap.routing import Tool
from mcp_businessmap.tools.base import dump_params, success_response


class ListWorkspacesParams(BaseModel):
    pass


class GetWorkspaceParams(BaseModel):
    workspace_id: int = Field(description="The ID of the workspace")


class CreateWorkspaceParams(BaseModel):
    name: str = Field(description="The name of the workspace")
    description: str | None = Field(
        default=None, description="Optional description for the workspace"
    )


async def handle_list_workspaces(
    ctx: ToolContext, _params: ListWorkspacesParams
) -> dict[str, Any]:
    workspaces = await ctx.client.get_workspaces()
    return success_response(workspaces)


async def handle_get_workspace(
    ctx: ToolContext, params: GetWorkspaceParams
) -> dict[str, Any]:
    workspace = await ctx.client.get_workspace(params.workspace_id)
    return success_response(workspace)


async def handle_create_workspace(
    ctx: ToolContext, params: CreateWorkspaceParams
) -> dict[str, Any]:
    workspace = await ctx.client.create_workspace(dump_params(params))
    return success_response(workspace, "Workspace created successfully:")


TOOLS: tuple[Tool, ...] = (
    Tool(
        name="list_workspaces",
        title="List Workspaces",
        description="Get a list of all workspaces",
        input_model=ListWorkspacesParams,
        handler=handle_list_workspaces,
        action="fetching workspaces",
    ),
    Tool(
        name="get_workspace",
        title="Get Workspace",
        description="Get details of a specific workspace",
        input_model=GetWorkspaceParams,
        handler=handle_get_workspace,
        action="fetching workspace",
    ),
    Tool(
        name="create_workspace",
        title="Create Workspace",
        description="Create a new workspace",
        input_model=CreateWorkspaceParams,
        handler=handle_create_workspace,
        action="creating workspace",
        mutating=True,
    ),
)
