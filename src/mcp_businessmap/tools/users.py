"""
User tools for the BusinessMap MCP Server.

- list_users, get_user, get_current_user
- invite_user (mutating)
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from mcp_businessmap.context import ToolContext
from mcp_businessmap.routing import Tool
from mcp_businessmap.tools.base import dump_params, success_response


class NoParams(BaseModel):
    pass


class GetUserParams(BaseModel):
    user_id: int = Field(description="The ID of the user")


class InviteUserParams(BaseModel):
    email: str = Field(description="The email address of the user to invite")
    do_not_send_confirmation_email: int | None = Field(
        default=None,
        ge=0,
        le=1,
        description=(
            "When set to 1, no invitation email is sent and an admin must "
            "manually send it later (0 or 1, default 0)"
        ),
    )

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Require a plausible address (local@domain.tld)."""
        local, _, domain = v.strip().partition("@")
        if not local or "." not in domain or domain.startswith(".") or domain.endswith("."):
            raise ValueError(f"Invalid email address: {v}")
        return v.strip()


async def handle_list_users(ctx: ToolContext, _params: NoParams) -> dict[str, Any]:
    return success_response(await ctx.client.get_users())


async def handle_get_user(ctx: ToolContext, params: GetUserParams) -> dict[str, Any]:
    return success_response(await ctx.client.get_user(params.user_id))


async def handle_get_current_user(ctx: ToolContext, _params: NoParams) -> dict[str, Any]:
    return success_response(await ctx.client.get_current_user())


async def handle_invite_user(ctx: ToolContext, params: InviteUserParams) -> dict[str, Any]:
    user = await ctx.client.invite_user(dump_params(params))
    return success_response(user, "User invited successfully:")


TOOLS: tuple[Tool, ...] = (
    Tool(
        name="list_users",
        title="List Users",
        description="Get a list of all users",
        input_model=NoParams,
        handler=handle_list_users,
        action="fetching users",
    ),
    Tool(
        name="get_user",
        title="Get User",
        description="Get details of a specific user",
        input_model=GetUserParams,
        handler=handle_get_user,
        action="fetching user",
    ),
    Tool(
        name="get_current_user",
        title="Get Current User",
        description="Get details of the current logged user",
        input_model=NoParams,
        handler=handle_get_current_user,
        action="fetching current user",
    ),
    Tool(
        name="invite_user",
        title="Invite User",
        description=(
            "Add and invite a new user by email. Sends an invitation email with a "
            "link to set their password and log in."
        ),
        input_model=InviteUserParams,
        handler=handle_invite_user,
        action="inviting user",
        mutating=True,
    ),
)
