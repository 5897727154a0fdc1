"""
Readable resources for the BusinessMap MCP Server.

- businessmap://workspaces
- businessmap://boards
- businessmap://boards/{board_id}
- businessmap://boards/{board_id}/cards
- businessmap://cards/{card_id}
"""

from __future__ import annotations

from typing import Any

from mcp_businessmap.context import ToolContext
from mcp_businessmap.errors import InvalidArgumentError
from mcp_businessmap.routing import Resource


def _int_variable(variables: dict[str, str], name: str) -> int:
    value = variables[name]
    try:
        return int(value)
    except ValueError as e:
        raise InvalidArgumentError(
            f"{name} must be an integer, got {value!r}",
            details={"parameter": name, "value": value},
        ) from e


async def read_workspaces(ctx: ToolContext, _variables: dict[str, str]) -> Any:
    return await ctx.client.get_workspaces()


async def read_boards(ctx: ToolContext, _variables: dict[str, str]) -> Any:
    return await ctx.client.get_boards()


async def read_board(ctx: ToolContext, variables: dict[str, str]) -> Any:
    return await ctx.client.get_board(_int_variable(variables, "board_id"))


async def read_board_cards(ctx: ToolContext, variables: dict[str, str]) -> Any:
    return await ctx.client.get_cards(_int_variable(variables, "board_id"))


async def read_card(ctx: ToolContext, variables: dict[str, str]) -> Any:
    return await ctx.client.get_card(_int_variable(variables, "card_id"))


RESOURCES: tuple[Resource, ...] = (
    Resource(
        uri="businessmap://workspaces",
        name="workspaces",
        description="All workspaces",
        handler=read_workspaces,
    ),
    Resource(
        uri="businessmap://boards",
        name="boards",
        description="All boards",
        handler=read_boards,
    ),
    Resource(
        uri="businessmap://boards/{board_id}",
        name="board",
        description="Details of one board",
        handler=read_board,
    ),
    Resource(
        uri="businessmap://boards/{board_id}/cards",
        name="cards",
        description="Cards on one board",
        handler=read_board_cards,
    ),
    Resource(
        uri="businessmap://cards/{card_id}",
        name="card",
        description="Details of one card",
        handler=read_card,
    ),
)
