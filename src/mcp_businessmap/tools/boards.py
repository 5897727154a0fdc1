"""
Board, column and lane tools for the BusinessMap MCP Server.

Read-only:
- list_boards, search_board, get_columns, get_lanes, get_lane,
  get_current_board_structure

Mutating:
- create_board, create_lane, create_column, update_column, delete_column
"""

from __future__ import annotations

import asyncio
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from mcp_businessmap.context import ToolContext
from mcp_businessmap.errors import InvalidArgumentError, ToolError
from mcp_businessmap.logging import get_logger
from mcp_businessmap.routing import Tool
from mcp_businessmap.tools.base import (
    dump_params,
    error_response,
    success_response,
    to_json,
)

logger = get_logger(__name__)

SEARCH_ACTION = "searching for board"


# =============================================================================
# Parameter Models
# =============================================================================


class ListBoardsParams(BaseModel):
    board_ids: list[int] | None = Field(default=None, description="Filter by board IDs")
    workspace_ids: list[int] | None = Field(
        default=None, description="Filter by workspace IDs"
    )
    workspace_id: int | None = Field(default=None, description="Filter by workspace ID")
    expand: list[Literal["workflows", "settings", "structure"]] | None = Field(
        default=None, description="Additional data to include"
    )
    fields: (
        list[
            Literal[
                "board_id", "workspace_id", "is_archived", "name", "description", "revision"
            ]
        ]
        | None
    ) = Field(default=None, description="Fields to return")
    if_assigned: int | None = Field(
        default=None, ge=0, le=1, description="Only boards the user is assigned to (0 or 1)"
    )
    is_archived: int | None = Field(
        default=None, ge=0, le=1, description="Archived status filter (0 or 1)"
    )


class SearchBoardParams(BaseModel):
    board_id: int | None = Field(default=None, description="The ID of the board to find")
    board_name: str | None = Field(
        default=None, description="Part of the board name (case-insensitive)"
    )
    workspace_id: int | None = Field(
        default=None, description="Restrict the search to a workspace"
    )


class BoardIdParams(BaseModel):
    board_id: int = Field(description="The ID of the board")


class GetLaneParams(BaseModel):
    lane_id: int = Field(description="The ID of the lane")


class CreateBoardParams(BaseModel):
    name: str = Field(description="The name of the board")
    description: str | None = Field(default=None, description="Board description")
    workspace_id: int | None = Field(
        default=None,
        description="Workspace for the board (defaults to the configured workspace)",
    )


class CreateLaneParams(BaseModel):
    workflow_id: int = Field(description="The workflow the lane belongs to")
    name: str = Field(description="The name of the lane")
    description: str | None = Field(default=None, description="Lane description")
    color: str = Field(description="Lane color (hex, e.g. 'FFFFFF')")
    position: int | None = Field(default=None, ge=0, description="Lane position")


class CreateColumnParams(BaseModel):
    board_id: int = Field(description="The ID of the board")
    workflow_id: int | None = Field(
        default=None, description="Workflow ID (required for main columns)"
    )
    section: int | None = Field(
        default=None,
        ge=1,
        le=4,
        description="1=Backlog, 2=Requested, 3=Progress, 4=Done (required for main columns)",
    )
    parent_column_id: int | None = Field(
        default=None, description="Parent column ID (creates a sub-column)"
    )
    position: int = Field(ge=0, description="Column position")
    name: str = Field(description="The name of the column")
    limit: int | None = Field(default=None, ge=0, description="WIP limit")
    description: str | None = Field(default=None, description="Column description")

    @model_validator(mode="after")
    def check_column_kind(self) -> CreateColumnParams:
        """Main columns need a workflow and a section, sub-columns a parent."""
        if self.parent_column_id is None and (
            self.workflow_id is None or self.section is None
        ):
            raise ValueError(
                "workflow_id and section are required unless parent_column_id is given"
            )
        return self


class UpdateColumnParams(BaseModel):
    board_id: int = Field(description="The ID of the board")
    column_id: int = Field(description="The ID of the column")
    name: str | None = Field(default=None, description="New column name")
    limit: int | None = Field(default=None, ge=0, description="New WIP limit")
    section: int | None = Field(default=None, ge=1, le=4, description="New section")
    position: int | None = Field(default=None, ge=0, description="New position")
    description: str | None = Field(default=None, description="New description")


class DeleteColumnParams(BaseModel):
    board_id: int = Field(description="The ID of the board")
    column_id: int = Field(description="The ID of the column to delete")


# =============================================================================
# Board Search
# =============================================================================


def _format_boards_list(boards: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "board_id": board.get("board_id"),
            "name": board.get("name"),
            "workspace_id": board.get("workspace_id"),
        }
        for board in boards
    ]


async def _list_boards_in(ctx: ToolContext, workspace_id: int | None) -> list[dict[str, Any]]:
    filters = {"workspace_id": workspace_id} if workspace_id else None
    return await ctx.client.get_boards(filters) or []


async def _board_with_structure(
    ctx: ToolContext, board: dict[str, Any], message: str
) -> dict[str, Any]:
    try:
        structure = await ctx.client.get_board_structure(board["board_id"])
    except ToolError as e:
        logger.warning(
            "Structure lookup failed for board ID %s: %s", board["board_id"], e.message
        )
        return success_response(
            board,
            f"Board found but structure unavailable. Structure error: {e.message}",
        )
    return success_response({**board, "structure": structure}, message)


async def _search_by_id(
    ctx: ToolContext, board_id: int, workspace_id: int | None
) -> dict[str, Any]:
    board, structure = await asyncio.gather(
        ctx.client.get_board(board_id),
        ctx.client.get_board_structure(board_id),
        return_exceptions=True,
    )
    failure = next(
        (r for r in (board, structure) if isinstance(r, BaseException)), None
    )
    if failure is None:
        return success_response({**board, "structure": structure}, "Board found directly:")
    if not isinstance(failure, ToolError):
        raise failure
    logger.warning("Direct board lookup failed for ID %s: %s", board_id, failure.message)

    boards = await _list_boards_in(ctx, workspace_id)
    found = next((b for b in boards if b.get("board_id") == board_id), None)
    if found is None:
        return error_response(
            InvalidArgumentError(
                f"Board with ID {board_id} not found. Available boards:\n"
                f"{to_json(_format_boards_list(boards))}"
            ),
            SEARCH_ACTION,
        )
    return await _board_with_structure(ctx, found, "Board found via list search:")


async def _search_by_name(
    ctx: ToolContext, board_name: str, workspace_id: int | None
) -> dict[str, Any]:
    boards = await _list_boards_in(ctx, workspace_id)
    needle = board_name.lower()
    found = [b for b in boards if needle in str(b.get("name", "")).lower()]

    if not found:
        return error_response(
            InvalidArgumentError(
                f'No boards found matching name "{board_name}". Available boards:\n'
                f"{to_json(_format_boards_list(boards))}"
            ),
            "searching for board by name",
        )

    if len(found) == 1:
        board = found[0]
        if not board.get("board_id"):
            return error_response(
                InvalidArgumentError("Board missing board_id"), "board validation"
            )
        return await _board_with_structure(ctx, board, "Board found by name:")

    return success_response(
        _format_boards_list(found), f'Multiple boards found matching "{board_name}":'
    )


# =============================================================================
# Handlers
# =============================================================================


async def handle_list_boards(ctx: ToolContext, params: ListBoardsParams) -> dict[str, Any]:
    boards = await ctx.client.get_boards(dump_params(params))
    return success_response(boards)


async def handle_search_board(
    ctx: ToolContext, params: SearchBoardParams
) -> dict[str, Any]:
    """
    Find a board by ID or by name.

    By ID, the board and its structure are fetched directly; if that fails
    the board list is searched instead. By name, a case-insensitive
    substring match is used. With neither, all boards are listed.
    """
    workspace_id = ctx.resolve_workspace_id(params.workspace_id)
    if params.board_id:
        return await _search_by_id(ctx, params.board_id, workspace_id)
    if params.board_name:
        return await _search_by_name(ctx, params.board_name, workspace_id)

    boards = await _list_boards_in(ctx, workspace_id)
    return success_response(_format_boards_list(boards), "All available boards:")


async def handle_get_columns(ctx: ToolContext, params: BoardIdParams) -> dict[str, Any]:
    return success_response(await ctx.client.get_columns(params.board_id))


async def handle_get_lanes(ctx: ToolContext, params: BoardIdParams) -> dict[str, Any]:
    return success_response(await ctx.client.get_lanes(params.board_id))


async def handle_get_lane(ctx: ToolContext, params: GetLaneParams) -> dict[str, Any]:
    return success_response(await ctx.client.get_lane(params.lane_id))


async def handle_get_current_board_structure(
    ctx: ToolContext, params: BoardIdParams
) -> dict[str, Any]:
    structure = await ctx.client.get_current_board_structure(params.board_id)
    return success_response(structure, "Board structure retrieved successfully:")


async def handle_create_board(
    ctx: ToolContext, params: CreateBoardParams
) -> dict[str, Any]:
    body = dump_params(params)
    workspace_id = ctx.resolve_workspace_id(params.workspace_id)
    if workspace_id is not None:
        body["workspace_id"] = workspace_id
    board = await ctx.client.create_board(body)
    return success_response(board, "Board created successfully:")


async def handle_create_lane(ctx: ToolContext, params: CreateLaneParams) -> dict[str, Any]:
    body = dump_params(params)
    body["description"] = params.description or None
    lane = await ctx.client.create_lane(body)
    return success_response(lane, "Lane created successfully:")


async def handle_create_column(
    ctx: ToolContext, params: CreateColumnParams
) -> dict[str, Any]:
    if params.parent_column_id:
        body = dump_params(params, exclude={"board_id", "workflow_id", "section"})
    else:
        body = dump_params(params, exclude={"board_id", "parent_column_id"})
    column = await ctx.client.create_column(params.board_id, body)
    return success_response(column, "Column created successfully:")


async def handle_update_column(
    ctx: ToolContext, params: UpdateColumnParams
) -> dict[str, Any]:
    body = dump_params(params, exclude={"board_id", "column_id"})
    column = await ctx.client.update_column(params.board_id, params.column_id, body)
    return success_response(column, "Column updated successfully:")


async def handle_delete_column(
    ctx: ToolContext, params: DeleteColumnParams
) -> dict[str, Any]:
    await ctx.client.delete_column(params.board_id, params.column_id)
    return success_response(
        {"board_id": params.board_id, "column_id": params.column_id},
        "Column deleted successfully:",
    )


TOOLS: tuple[Tool, ...] = (
    Tool(
        name="list_boards",
        title="List Boards",
        description="Get a list of boards with optional filters",
        input_model=ListBoardsParams,
        handler=handle_list_boards,
        action="fetching boards",
    ),
    Tool(
        name="search_board",
        title="Search Board",
        description=(
            "Search for a board by ID or name, with intelligent fallback to list "
            "all boards if direct search fails"
        ),
        input_model=SearchBoardParams,
        handler=handle_search_board,
        action=SEARCH_ACTION,
    ),
    Tool(
        name="get_columns",
        title="Get Board Columns",
        description="Get all columns for a board",
        input_model=BoardIdParams,
        handler=handle_get_columns,
        action="fetching board columns",
    ),
    Tool(
        name="get_lanes",
        title="Get Board Lanes",
        description="Get all lanes/swimlanes for a board",
        input_model=BoardIdParams,
        handler=handle_get_lanes,
        action="fetching board lanes",
    ),
    Tool(
        name="get_lane",
        title="Get Lane Details",
        description="Get details of a specific lane/swimlane",
        input_model=GetLaneParams,
        handler=handle_get_lane,
        action="fetching lane details",
    ),
    Tool(
        name="get_current_board_structure",
        title="Get Current Board Structure",
        description=(
            "Get the complete current structure of a board including workflows, "
            "columns, lanes, and configurations"
        ),
        input_model=BoardIdParams,
        handler=handle_get_current_board_structure,
        action="getting current board structure",
    ),
    Tool(
        name="create_board",
        title="Create Board",
        description="Create a new board in a workspace",
        input_model=CreateBoardParams,
        handler=handle_create_board,
        action="creating board",
        mutating=True,
    ),
    Tool(
        name="create_lane",
        title="Create Lane",
        description="Create a new lane/swimlane in a board",
        input_model=CreateLaneParams,
        handler=handle_create_lane,
        action="creating lane",
        mutating=True,
    ),
    Tool(
        name="create_column",
        title="Create Column",
        description=(
            "Create a new column on a board. Supports both main columns (requires "
            "workflow_id and section) and sub-columns (requires parent_column_id). "
            "Section values: 1=Backlog, 2=Requested, 3=Progress, 4=Done."
        ),
        input_model=CreateColumnParams,
        handler=handle_create_column,
        action="creating column",
        mutating=True,
    ),
    Tool(
        name="update_column",
        title="Update Column",
        description="Update the details of a specific column on a board",
        input_model=UpdateColumnParams,
        handler=handle_update_column,
        action="updating column",
        mutating=True,
    ),
    Tool(
        name="delete_column",
        title="Delete Column",
        description="Delete a column from a board",
        input_model=DeleteColumnParams,
        handler=handle_delete_column,
        action="deleting column",
        mutating=True,
    ),
)
