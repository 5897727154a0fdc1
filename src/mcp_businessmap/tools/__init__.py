"""
MCP Tools package for the BusinessMap MCP Server.

This package contains tool implementations organized by API area.

Modules:
- workspaces: Workspace listing and creation
- boards: Boards, columns, lanes and board search
- cards: Cards and everything attached to them
- users: Users and invitations
- workflows: Workflow cycle-time configuration
- utility: Connectivity checks
"""

from mcp_businessmap.tools import boards, cards, users, utility, workflows, workspaces

ALL_TOOLS = (
    *workspaces.TOOLS,
    *boards.TOOLS,
    *cards.TOOLS,
    *users.TOOLS,
    *workflows.TOOLS,
    *utility.TOOLS,
)

__all__ = ["ALL_TOOLS"]
