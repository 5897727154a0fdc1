"""
Card tools for the BusinessMap MCP Server.

Read-only tools cover cards, comments, custom fields, types, outcomes,
history, links, subtasks and the parent/child hierarchy. Mutating tools
create, move, update and delete cards and manage comments, blocking,
tags, stickers, parents and predecessors.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from mcp_businessmap.context import ToolContext
from mcp_businessmap.routing import Tool
from mcp_businessmap.tools.base import dump_params, success_response, text_response


def _counted(key: str, items: Any) -> dict[str, Any]:
    """Wrap a list result with its length."""
    items = items or []
    return {key: items, "count": len(items)}


# =============================================================================
# Parameter Models
# =============================================================================


class CardIdParams(BaseModel):
    card_id: int = Field(description="The ID of the card")


class NoParams(BaseModel):
    pass


class ListCardsParams(BaseModel):
    board_id: int = Field(description="The ID of the board")

    created_from_date: str | None = Field(default=None, description="Created on or after (YYYY-MM-DD)")
    created_to_date: str | None = Field(default=None, description="Created on or before (YYYY-MM-DD)")
    deadline_from_date: str | None = Field(default=None, description="Deadline on or after (YYYY-MM-DD)")
    deadline_to_date: str | None = Field(default=None, description="Deadline on or before (YYYY-MM-DD)")
    archived_from_date: str | None = Field(default=None, description="Archived on or after (YYYY-MM-DD)")
    archived_to_date: str | None = Field(default=None, description="Archived on or before (YYYY-MM-DD)")
    first_start_from_date: str | None = Field(default=None, description="First started on or after")
    first_start_to_date: str | None = Field(default=None, description="First started on or before")
    last_end_from_date: str | None = Field(default=None, description="Last finished on or after")
    last_end_to_date: str | None = Field(default=None, description="Last finished on or before")
    last_modified_from_date: str | None = Field(default=None, description="Modified on or after")
    last_modified_to_date: str | None = Field(default=None, description="Modified on or before")

    card_ids: list[int] | None = Field(default=None, description="Filter by card IDs")
    column_ids: list[int] | None = Field(default=None, description="Filter by column IDs")
    lane_ids: list[int] | None = Field(default=None, description="Filter by lane IDs")
    workflow_ids: list[int] | None = Field(default=None, description="Filter by workflow IDs")
    owner_user_ids: list[int] | None = Field(default=None, description="Filter by owner user IDs")
    type_ids: list[int] | None = Field(default=None, description="Filter by card type IDs")
    priorities: list[int] | None = Field(default=None, description="Filter by priorities")
    sizes: list[int] | None = Field(default=None, description="Filter by sizes")
    sections: list[int] | None = Field(default=None, description="Filter by column sections")
    colors: list[str] | None = Field(default=None, description="Filter by card colors")
    custom_ids: list[str] | None = Field(default=None, description="Filter by custom IDs")
    tag_ids: list[int] | None = Field(default=None, description="Filter by tag IDs")
    assignee_user_id: int | None = Field(default=None, description="Filter by assignee")

    page: int | None = Field(default=None, ge=1, description="Page number")
    per_page: int | None = Field(default=None, ge=1, description="Cards per page")


class CreateCardParams(BaseModel):
    title: str = Field(description="The title of the card")
    column_id: int = Field(description="The column to create the card in")
    lane_id: int | None = Field(default=None, description="The lane to create the card in")
    description: str | None = Field(default=None, description="Card description")
    owner_user_id: int | None = Field(default=None, description="Owner user ID")
    type_id: int | None = Field(default=None, description="Card type ID")
    size: float | None = Field(default=None, ge=0, description="Card size/points")
    priority: int | None = Field(default=None, description="Card priority")
    color: str | None = Field(default=None, description="Card color")
    deadline: str | None = Field(default=None, description="Deadline (YYYY-MM-DD)")
    position: int | None = Field(default=None, ge=0, description="Position in the cell")


class MoveCardParams(BaseModel):
    card_id: int = Field(description="The ID of the card to move")
    column_id: int = Field(description="The target column ID")
    lane_id: int | None = Field(default=None, description="The target lane ID")
    position: int | None = Field(default=None, ge=0, description="Position in the target cell")


class UpdateCardParams(BaseModel):
    card_id: int = Field(description="The ID of the card to update")
    title: str | None = Field(default=None, description="New title")
    description: str | None = Field(default=None, description="New description")
    column_id: int | None = Field(default=None, description="New column ID")
    lane_id: int | None = Field(default=None, description="New lane ID")
    owner_user_id: int | None = Field(default=None, description="New owner user ID")
    type_id: int | None = Field(default=None, description="New card type ID")
    size: float | None = Field(default=None, ge=0, description="New size/points")
    priority: int | None = Field(default=None, description="New priority")
    color: str | None = Field(default=None, description="New color")
    deadline: str | None = Field(default=None, description="New deadline (YYYY-MM-DD)")


class CardSizeParams(BaseModel):
    card_id: int = Field(description="The ID of the card")
    size: float = Field(ge=0, description="The new size/points")


class CardCommentParams(BaseModel):
    card_id: int = Field(description="The ID of the card")
    comment_id: int = Field(description="The ID of the comment")


class CardHistoryParams(BaseModel):
    card_id: int = Field(description="The ID of the card")
    outcome_id: int = Field(description="The ID of the outcome")


class CardSubtaskParams(BaseModel):
    card_id: int = Field(description="The ID of the card")
    subtask_id: int = Field(description="The ID of the subtask")


class CreateSubtaskParams(BaseModel):
    card_id: int = Field(description="The ID of the parent card")
    description: str = Field(description="The subtask description")
    owner_user_id: int | None = Field(default=None, description="Owner user ID")
    is_finished: int | None = Field(default=None, ge=0, le=1, description="Finished flag (0 or 1)")
    deadline: str | None = Field(default=None, description="Deadline (YYYY-MM-DD)")
    position: int | None = Field(default=None, ge=0, description="Subtask position")


class CardParentParams(BaseModel):
    card_id: int = Field(description="The ID of the child card")
    parent_card_id: int = Field(description="The ID of the parent card")


class BlockCardParams(BaseModel):
    card_id: int = Field(description="The ID of the card to block")
    reason: str = Field(min_length=1, description="Why the card is blocked")


class CreateCommentParams(BaseModel):
    card_id: int = Field(description="The ID of the card")
    text: str = Field(min_length=1, description="The comment text")


class UpdateCommentParams(BaseModel):
    card_id: int = Field(description="The ID of the card")
    comment_id: int = Field(description="The ID of the comment")
    text: str = Field(min_length=1, description="The new comment text")


class CreateTagParams(BaseModel):
    label: str = Field(min_length=1, description="The tag label")
    color: str | None = Field(default=None, description="Tag color (hex)")


class CardTagParams(BaseModel):
    card_id: int = Field(description="The ID of the card")
    tag_id: int = Field(description="The ID of the tag")


class AddStickerParams(BaseModel):
    card_id: int = Field(description="The ID of the card")
    sticker_id: int = Field(description="The ID of the sticker")


class RemoveStickerParams(BaseModel):
    card_id: int = Field(description="The ID of the card")
    sticker_card_id: int = Field(
        description="The sticker-card association ID (the 'id' returned when adding)"
    )


class AddPredecessorParams(BaseModel):
    card_id: int = Field(description="The ID of the successor card")
    predecessor_card_id: int = Field(description="The ID of the predecessor card")
    linked_card_position: int | None = Field(default=None, ge=0)
    card_position: int | None = Field(default=None, ge=0)


class RemovePredecessorParams(BaseModel):
    card_id: int = Field(description="The ID of the successor card")
    predecessor_card_id: int = Field(description="The ID of the predecessor card")


# =============================================================================
# Read-only Handlers
# =============================================================================


async def handle_list_cards(ctx: ToolContext, params: ListCardsParams) -> dict[str, Any]:
    filters = dump_params(params, exclude={"board_id"})
    return success_response(await ctx.client.get_cards(params.board_id, filters))


async def handle_get_card(ctx: ToolContext, params: CardIdParams) -> dict[str, Any]:
    return success_response(await ctx.client.get_card(params.card_id))


async def handle_get_card_size(ctx: ToolContext, params: CardIdParams) -> dict[str, Any]:
    card = await ctx.client.get_card(params.card_id)
    size = card.get("size") or 0
    return text_response(
        f'Card "{card.get("title")}" (ID: {params.card_id}) has size: {size} points'
    )


async def handle_get_card_comments(
    ctx: ToolContext, params: CardIdParams
) -> dict[str, Any]:
    comments = await ctx.client.get_card_comments(params.card_id)
    return success_response(_counted("comments", comments))


async def handle_get_card_comment(
    ctx: ToolContext, params: CardCommentParams
) -> dict[str, Any]:
    comment = await ctx.client.get_card_comment(params.card_id, params.comment_id)
    return success_response(comment)


async def handle_get_card_custom_fields(
    ctx: ToolContext, params: CardIdParams
) -> dict[str, Any]:
    fields = await ctx.client.get_card_custom_fields(params.card_id)
    return success_response(_counted("customFields", fields))


async def handle_get_card_types(ctx: ToolContext, _params: NoParams) -> dict[str, Any]:
    card_types = await ctx.client.get_card_types()
    return success_response(_counted("cardTypes", card_types))


async def handle_get_card_history(
    ctx: ToolContext, params: CardHistoryParams
) -> dict[str, Any]:
    history = await ctx.client.get_card_history(params.card_id, params.outcome_id)
    return success_response(_counted("history", history))


async def handle_get_card_outcomes(
    ctx: ToolContext, params: CardIdParams
) -> dict[str, Any]:
    outcomes = await ctx.client.get_card_outcomes(params.card_id)
    return success_response(_counted("outcomes", outcomes))


async def handle_get_card_linked_cards(
    ctx: ToolContext, params: CardIdParams
) -> dict[str, Any]:
    linked = await ctx.client.get_card_linked_cards(params.card_id)
    return success_response(_counted("linkedCards", linked))


async def handle_get_card_subtasks(
    ctx: ToolContext, params: CardIdParams
) -> dict[str, Any]:
    subtasks = await ctx.client.get_card_subtasks(params.card_id)
    return success_response(_counted("subtasks", subtasks))


async def handle_get_card_subtask(
    ctx: ToolContext, params: CardSubtaskParams
) -> dict[str, Any]:
    subtask = await ctx.client.get_card_subtask(params.card_id, params.subtask_id)
    return success_response(subtask)


async def handle_get_card_parents(
    ctx: ToolContext, params: CardIdParams
) -> dict[str, Any]:
    parents = await ctx.client.get_card_parents(params.card_id)
    return success_response(_counted("parents", parents))


async def handle_get_card_parent(
    ctx: ToolContext, params: CardParentParams
) -> dict[str, Any]:
    parent = await ctx.client.get_card_parent(params.card_id, params.parent_card_id)
    return success_response(parent)


async def handle_get_card_parent_graph(
    ctx: ToolContext, params: CardIdParams
) -> dict[str, Any]:
    graph = await ctx.client.get_card_parent_graph(params.card_id)
    return success_response(_counted("parentGraph", graph))


async def handle_get_card_children(
    ctx: ToolContext, params: CardIdParams
) -> dict[str, Any]:
    children = await ctx.client.get_card_children(params.card_id)
    return success_response(_counted("children", children))


# =============================================================================
# Mutating Handlers
# =============================================================================


async def handle_create_card(ctx: ToolContext, params: CreateCardParams) -> dict[str, Any]:
    card = await ctx.client.create_card(dump_params(params))
    return success_response(card, "Card created successfully:")


async def handle_move_card(ctx: ToolContext, params: MoveCardParams) -> dict[str, Any]:
    card = await ctx.client.move_card(
        params.card_id, params.column_id, params.lane_id, params.position
    )
    return success_response(card, "Card moved successfully:")


async def handle_update_card(ctx: ToolContext, params: UpdateCardParams) -> dict[str, Any]:
    fields = dump_params(params, exclude={"card_id"})
    card = await ctx.client.update_card(params.card_id, fields)
    return success_response(card, "Card updated successfully:")


async def handle_set_card_size(ctx: ToolContext, params: CardSizeParams) -> dict[str, Any]:
    card = await ctx.client.update_card(params.card_id, {"size": params.size})
    title = card.get("title") if isinstance(card, dict) else None
    return text_response(
        f'Card "{title}" (ID: {params.card_id}) size updated to: {params.size:g} points'
    )


async def handle_delete_card(ctx: ToolContext, params: CardIdParams) -> dict[str, Any]:
    await ctx.client.delete_card(params.card_id)
    return success_response({"card_id": params.card_id}, "Card deleted successfully:")


async def handle_create_card_subtask(
    ctx: ToolContext, params: CreateSubtaskParams
) -> dict[str, Any]:
    subtask = await ctx.client.create_card_subtask(
        params.card_id, dump_params(params, exclude={"card_id"})
    )
    return success_response(subtask, "Subtask created successfully:")


async def handle_add_card_parent(
    ctx: ToolContext, params: CardParentParams
) -> dict[str, Any]:
    result = await ctx.client.add_card_parent(params.card_id, params.parent_card_id)
    return success_response(result, "Card parent added successfully:")


async def handle_remove_card_parent(
    ctx: ToolContext, params: CardParentParams
) -> dict[str, Any]:
    await ctx.client.remove_card_parent(params.card_id, params.parent_card_id)
    return success_response(
        {"card_id": params.card_id, "parent_card_id": params.parent_card_id},
        "Card parent removed successfully:",
    )


async def handle_block_card(ctx: ToolContext, params: BlockCardParams) -> dict[str, Any]:
    await ctx.client.block_card(params.card_id, params.reason)
    return success_response(
        {"card_id": params.card_id, "reason": params.reason},
        "Card blocked successfully:",
    )


async def handle_unblock_card(ctx: ToolContext, params: CardIdParams) -> dict[str, Any]:
    await ctx.client.unblock_card(params.card_id)
    return success_response({"card_id": params.card_id}, "Card unblocked successfully:")


async def handle_create_comment(
    ctx: ToolContext, params: CreateCommentParams
) -> dict[str, Any]:
    comment = await ctx.client.create_card_comment(params.card_id, {"text": params.text})
    return success_response(comment, "Comment created successfully:")


async def handle_update_comment(
    ctx: ToolContext, params: UpdateCommentParams
) -> dict[str, Any]:
    comment = await ctx.client.update_card_comment(
        params.card_id, params.comment_id, {"text": params.text}
    )
    return success_response(comment, "Comment updated successfully:")


async def handle_delete_comment(
    ctx: ToolContext, params: CardCommentParams
) -> dict[str, Any]:
    await ctx.client.delete_card_comment(params.card_id, params.comment_id)
    return success_response(
        {"card_id": params.card_id, "comment_id": params.comment_id},
        "Comment deleted successfully:",
    )


async def handle_create_tag(ctx: ToolContext, params: CreateTagParams) -> dict[str, Any]:
    tag = await ctx.client.create_tag(dump_params(params))
    return success_response(tag, "Tag created successfully:")


async def handle_add_tag_to_card(ctx: ToolContext, params: CardTagParams) -> dict[str, Any]:
    await ctx.client.add_tag_to_card(params.card_id, params.tag_id)
    return success_response(
        {"card_id": params.card_id, "tag_id": params.tag_id},
        "Tag added to card successfully:",
    )


async def handle_remove_tag_from_card(
    ctx: ToolContext, params: CardTagParams
) -> dict[str, Any]:
    await ctx.client.remove_tag_from_card(params.card_id, params.tag_id)
    return success_response(
        {"card_id": params.card_id, "tag_id": params.tag_id},
        "Tag removed from card successfully:",
    )


async def handle_add_sticker_to_card(
    ctx: ToolContext, params: AddStickerParams
) -> dict[str, Any]:
    result = await ctx.client.add_sticker_to_card(params.card_id, params.sticker_id)
    return success_response(result, "Sticker added to card successfully:")


async def handle_remove_sticker_from_card(
    ctx: ToolContext, params: RemoveStickerParams
) -> dict[str, Any]:
    await ctx.client.remove_sticker_from_card(params.card_id, params.sticker_card_id)
    return success_response(
        {"card_id": params.card_id, "sticker_card_id": params.sticker_card_id},
        "Sticker removed from card successfully:",
    )


async def handle_add_predecessor(
    ctx: ToolContext, params: AddPredecessorParams
) -> dict[str, Any]:
    positions = dump_params(params, exclude={"card_id", "predecessor_card_id"})
    await ctx.client.add_predecessor(params.card_id, params.predecessor_card_id, positions)
    return success_response(
        {"card_id": params.card_id, "predecessor_card_id": params.predecessor_card_id},
        "Predecessor added successfully:",
    )


async def handle_remove_predecessor(
    ctx: ToolContext, params: RemovePredecessorParams
) -> dict[str, Any]:
    await ctx.client.remove_predecessor(params.card_id, params.predecessor_card_id)
    return success_response(
        {"card_id": params.card_id, "predecessor_card_id": params.predecessor_card_id},
        "Predecessor removed successfully:",
    )


# =============================================================================
# Tool Table
# =============================================================================


def _read(name: str, title: str, description: str, model: type[BaseModel], handler: Any, action: str) -> Tool:
    return Tool(name, title, description, model, handler, action)


def _write(name: str, title: str, description: str, model: type[BaseModel], handler: Any, action: str) -> Tool:
    return Tool(name, title, description, model, handler, action, mutating=True)


TOOLS: tuple[Tool, ...] = (
    _read("list_cards", "List Cards", "Get a list of cards from a board with optional filters",
          ListCardsParams, handle_list_cards, "fetching cards"),
    _read("get_card", "Get Card", "Get details of a specific card",
          CardIdParams, handle_get_card, "fetching card"),
    _read("get_card_size", "Get Card Size", "Get the size/points of a specific card",
          CardIdParams, handle_get_card_size, "fetching card size"),
    _read("get_card_comments", "Get Card Comments", "Get all comments for a specific card",
          CardIdParams, handle_get_card_comments, "getting card comments"),
    _read("get_card_comment", "Get Card Comment", "Get details of a specific comment from a card",
          CardCommentParams, handle_get_card_comment, "getting card comment"),
    _read("get_card_custom_fields", "Get Card Custom Fields", "Get all custom fields for a specific card",
          CardIdParams, handle_get_card_custom_fields, "getting card custom fields"),
    _read("get_card_types", "Get Card Types", "Get all available card types",
          NoParams, handle_get_card_types, "getting card types"),
    _read("get_card_history", "Get Card History", "Get the history of a specific card outcome",
          CardHistoryParams, handle_get_card_history, "getting card history"),
    _read("get_card_outcomes", "Get Card Outcomes", "Get all outcomes for a specific card",
          CardIdParams, handle_get_card_outcomes, "getting card outcomes"),
    _read("get_card_linked_cards", "Get Card Linked Cards", "Get all linked cards for a specific card",
          CardIdParams, handle_get_card_linked_cards, "getting card linked cards"),
    _read("get_card_subtasks", "Get Card Subtasks", "Get all subtasks for a specific card",
          CardIdParams, handle_get_card_subtasks, "getting card subtasks"),
    _read("get_card_subtask", "Get Card Subtask", "Get details of a specific subtask from a card",
          CardSubtaskParams, handle_get_card_subtask, "getting card subtask"),
    _read("get_card_parents", "Get Card Parents", "Get a list of parent cards for a specific card",
          CardIdParams, handle_get_card_parents, "getting card parents"),
    _read("get_card_parent", "Get Card Parent", "Check if a card is a parent of a given card",
          CardParentParams, handle_get_card_parent, "getting card parent"),
    _read("get_card_parent_graph", "Get Card Parent Graph",
          "Get a list of parent cards including their parent cards too",
          CardIdParams, handle_get_card_parent_graph, "getting card parent graph"),
    _read("get_card_children", "Get Card Children", "Get a list of child cards of a specified parent card",
          CardIdParams, handle_get_card_children, "getting card children"),
    _write("create_card", "Create Card", "Create a new card in a board",
           CreateCardParams, handle_create_card, "creating card"),
    _write("move_card", "Move Card", "Move a card to a different column or lane",
           MoveCardParams, handle_move_card, "moving card"),
    _write("update_card", "Update Card", "Update a card's properties",
           UpdateCardParams, handle_update_card, "updating card"),
    _write("set_card_size", "Set Card Size", "Set the size/points of a specific card",
           CardSizeParams, handle_set_card_size, "setting card size"),
    _write("delete_card", "Delete Card",
           "Permanently delete a card. This action cannot be undone and the card cannot be recovered.",
           CardIdParams, handle_delete_card, "deleting card"),
    _write("create_card_subtask", "Create Card Subtask", "Create a new subtask for a card",
           CreateSubtaskParams, handle_create_card_subtask, "creating card subtask"),
    _write("add_card_parent", "Add Card Parent", "Make a card a parent of a given card",
           CardParentParams, handle_add_card_parent, "adding card parent"),
    _write("remove_card_parent", "Remove Card Parent",
           "Remove the link between a child card and a parent card",
           CardParentParams, handle_remove_card_parent, "removing card parent"),
    _write("block_card", "Block Card",
           "Block a card and set a reason/comment explaining why it is blocked",
           BlockCardParams, handle_block_card, "blocking card"),
    _write("unblock_card", "Unblock Card", "Unblock a card by removing its block reason",
           CardIdParams, handle_unblock_card, "unblocking card"),
    _write("create_comment", "Create Comment", "Add a new comment to a card",
           CreateCommentParams, handle_create_comment, "creating comment"),
    _write("update_comment", "Update Comment", "Update the text of an existing comment on a card",
           UpdateCommentParams, handle_update_comment, "updating comment"),
    _write("delete_comment", "Delete Comment", "Delete a comment from a card",
           CardCommentParams, handle_delete_comment, "deleting comment"),
    _write("create_tag", "Create Tag", "Create a new tag in the workspace",
           CreateTagParams, handle_create_tag, "creating tag"),
    _write("add_tag_to_card", "Add Tag to Card", "Add an existing tag to a card",
           CardTagParams, handle_add_tag_to_card, "adding tag to card"),
    _write("remove_tag_from_card", "Remove Tag from Card", "Remove a tag from a card",
           CardTagParams, handle_remove_tag_from_card, "removing tag from card"),
    _write("add_sticker_to_card", "Add Sticker to Card", "Add a sticker to a card",
           AddStickerParams, handle_add_sticker_to_card, "adding sticker to card"),
    _write("remove_sticker_from_card", "Remove Sticker from Card",
           "Remove a sticker from a card using the sticker-card association ID",
           RemoveStickerParams, handle_remove_sticker_from_card, "removing sticker from card"),
    _write("add_predecessor", "Add Predecessor",
           "Establish or update a predecessor-successor relationship between two cards",
           AddPredecessorParams, handle_add_predecessor, "adding predecessor"),
    _write("remove_predecessor", "Remove Predecessor",
           "Remove the predecessor-successor relationship between two cards",
           RemovePredecessorParams, handle_remove_predecessor, "removing predecessor"),
)
