"""
Operation routing and registration for the BusinessMap MCP Server.

This module provides:
- Tool, Resource, Prompt: declarative descriptions of the exposed operations
- OperationRegistry: name -> operation table with argument validation
- build_registry(): the registry of every BusinessMap operation

The registry is built once per process and shared read-only by all sessions.
Mutating tools are never registered when the registry is read-only.
"""

from __future__ import annotations

import json
import re
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from mcp_businessmap.errors import (
    InvalidArgumentError,
    NotFoundError,
    ResourceNotFoundError,
    ToolError,
)
from mcp_businessmap.logging import get_logger

if TYPE_CHECKING:
    from mcp_businessmap.context import ToolContext

logger = get_logger(__name__)

# Tool handlers receive the validated argument model and return a tool result
ToolHandler = Callable[["ToolContext", Any], Awaitable[dict[str, Any]]]
ResourceHandler = Callable[["ToolContext", dict[str, str]], Awaitable[Any]]
PromptRenderer = Callable[[dict[str, str]], str]

_TEMPLATE_VARIABLE = re.compile(r"\{([a-zA-Z_][a-zA-Z0-9_]*)\}")


def _format_validation_error(error: ValidationError) -> str:
    """Render a ValidationError as ``field: message`` pairs."""
    parts = []
    for item in error.errors():
        location = ".".join(str(loc) for loc in item["loc"])
        parts.append(f"{location}: {item['msg']}" if location else item["msg"])
    return "; ".join(parts)


@dataclass(frozen=True)
class Tool:
    """
    A callable tool.

    Attributes:
        name: Tool name (e.g., "get_card").
        title: Human-readable title.
        description: Description shown to clients.
        input_model: Pydantic model validating the arguments.
        handler: Async handler returning a tool result.
        action: Verb phrase used in error text ("Error <action>: ...").
        mutating: Whether the tool changes upstream state.
    """

    name: str
    title: str
    description: str
    input_model: type[BaseModel]
    handler: ToolHandler
    action: str
    mutating: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Describe the tool for ``tools/list``."""
        schema = self.input_model.model_json_schema()
        schema.pop("title", None)
        return {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "inputSchema": schema,
        }


@dataclass(frozen=True)
class Resource:
    """
    A readable resource, either a fixed URI or a URI template.

    Attributes:
        uri: Fixed URI or template with ``{variable}`` placeholders.
        name: Resource name.
        description: Description shown to clients.
        handler: Async handler returning JSON-serializable data.
        mime_type: MIME type of the rendered contents.
    """

    uri: str
    name: str
    description: str
    handler: ResourceHandler
    mime_type: str = "application/json"
    _pattern: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        parts = []
        position = 0
        for match in _TEMPLATE_VARIABLE.finditer(self.uri):
            parts.append(re.escape(self.uri[position : match.start()]))
            parts.append(f"(?P<{match.group(1)}>[^/]+)")
            position = match.end()
        parts.append(re.escape(self.uri[position:]))
        object.__setattr__(self, "_pattern", re.compile("^" + "".join(parts) + "$"))

    @property
    def is_template(self) -> bool:
        """Whether the URI contains template variables."""
        return _TEMPLATE_VARIABLE.search(self.uri) is not None

    def match(self, uri: str) -> dict[str, str] | None:
        """Return the template variables if ``uri`` matches, else None."""
        found = self._pattern.match(uri)
        if found is None:
            return None
        return found.groupdict()

    def to_dict(self) -> dict[str, Any]:
        """Describe the resource for ``resources/list`` or ``resources/templates/list``."""
        key = "uriTemplate" if self.is_template else "uri"
        return {
            key: self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
        }


@dataclass(frozen=True)
class PromptArgument:
    """A named prompt argument."""

    name: str
    description: str
    required: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "required": self.required,
        }


@dataclass(frozen=True)
class Prompt:
    """
    A prompt template.

    Attributes:
        name: Prompt name (e.g., "generate-board-report").
        title: Human-readable title.
        description: Description shown to clients.
        arguments: Accepted arguments.
        render: Builds the user message text from the arguments.
    """

    name: str
    title: str
    description: str
    arguments: tuple[PromptArgument, ...]
    render: PromptRenderer

    def to_dict(self) -> dict[str, Any]:
        """Describe the prompt for ``prompts/list``."""
        return {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "arguments": [arg.to_dict() for arg in self.arguments],
        }


class OperationRegistry:
    """
    Registry of the tools, resources and prompts exposed by the server.

    Example:
        >>> registry = OperationRegistry(read_only=True)
        >>> registry.register_tool(get_card_tool)
        True
        >>> result = await registry.call_tool("get_card", ctx, {"card_id": 1})
    """

    def __init__(self, read_only: bool = False) -> None:
        """
        Initialize an empty registry.

        Args:
            read_only: When True, mutating tools are skipped at registration.
        """
        self.read_only = read_only
        self._tools: dict[str, Tool] = {}
        self._resources: dict[str, Resource] = {}
        self._prompts: dict[str, Prompt] = {}

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register_tool(self, tool: Tool) -> bool:
        """
        Register a tool.

        Returns:
            False if the tool was skipped because the registry is read-only.

        Raises:
            ValueError: If a tool with the same name is already registered.
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        if tool.mutating and self.read_only:
            logger.debug("Skipping mutating tool in read-only mode: %s", tool.name)
            return False
        self._tools[tool.name] = tool
        return True

    def register_tools(self, tools: Iterable[Tool]) -> None:
        for tool in tools:
            self.register_tool(tool)

    def register_resource(self, resource: Resource) -> None:
        if resource.uri in self._resources:
            raise ValueError(f"Resource '{resource.uri}' is already registered")
        self._resources[resource.uri] = resource

    def register_prompt(self, prompt: Prompt) -> None:
        if prompt.name in self._prompts:
            raise ValueError(f"Prompt '{prompt.name}' is already registered")
        self._prompts[prompt.name] = prompt

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def get_tool(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def list_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def list_resources(self) -> list[Resource]:
        """Return the fixed-URI resources."""
        return [r for r in self._resources.values() if not r.is_template]

    def list_resource_templates(self) -> list[Resource]:
        """Return the URI-template resources."""
        return [r for r in self._resources.values() if r.is_template]

    def list_prompts(self) -> list[Prompt]:
        return list(self._prompts.values())

    def find_resource(self, uri: str) -> tuple[Resource, dict[str, str]]:
        """
        Find the resource serving ``uri``.

        Raises:
            ResourceNotFoundError: If no resource matches.
        """
        for resource in self._resources.values():
            variables = resource.match(uri)
            if variables is not None:
                return resource, variables
        raise ResourceNotFoundError(uri)

    # -------------------------------------------------------------------------
    # Invocation
    # -------------------------------------------------------------------------

    async def call_tool(
        self,
        name: str,
        ctx: ToolContext,
        arguments: dict[str, Any] | None,
    ) -> dict[str, Any]:
        """
        Validate arguments and invoke a tool.

        Failures inside the handler become an ``isError`` tool result.
        Unknown tools and invalid arguments are protocol errors.

        Raises:
            NotFoundError: If the tool is not registered.
            InvalidArgumentError: If the arguments fail validation.
        """
        # Imported here to avoid a cycle through the tools package
        from mcp_businessmap.tools.base import error_response

        tool = self.get_tool(name)
        if tool is None:
            raise NotFoundError(f"Tool {name} not found", details={"tool": name})

        try:
            params = tool.input_model.model_validate(arguments or {})
        except ValidationError as e:
            raise InvalidArgumentError(
                f"Invalid arguments for tool {name}: {_format_validation_error(e)}",
                details={"tool": name},
            ) from e

        try:
            return await tool.handler(ctx, params)
        except ToolError as e:
            logger.warning(
                "Tool call failed",
                extra={"tool": name, "error_code": e.error_code, "error": e.message},
            )
            return error_response(e, tool.action)
        except Exception as e:
            logger.exception(
                "Unexpected error in tool",
                extra={"tool": name, "exception_type": type(e).__name__},
            )
            return error_response(e, tool.action)

    async def read_resource(self, uri: str, ctx: ToolContext) -> dict[str, Any]:
        """
        Read a resource and render it as JSON text contents.

        Raises:
            ResourceNotFoundError: If no resource matches ``uri``.
            ToolError: If the handler fails.
        """
        resource, variables = self.find_resource(uri)
        data = await resource.handler(ctx, variables)
        return {
            "contents": [
                {
                    "uri": uri,
                    "mimeType": resource.mime_type,
                    "text": json.dumps(data, indent=2, ensure_ascii=False, default=str),
                }
            ]
        }

    def get_prompt(self, name: str, arguments: dict[str, Any] | None) -> dict[str, Any]:
        """
        Render a prompt.

        Raises:
            NotFoundError: If the prompt is not registered.
            InvalidArgumentError: If a required argument is missing.
        """
        prompt = self._prompts.get(name)
        if prompt is None:
            raise NotFoundError(f"Prompt {name} not found", details={"prompt": name})

        values = {key: str(value) for key, value in (arguments or {}).items()}
        missing = [
            arg.name for arg in prompt.arguments if arg.required and arg.name not in values
        ]
        if missing:
            raise InvalidArgumentError(
                f"Missing required arguments for prompt {name}: {', '.join(missing)}",
                details={"prompt": name, "missing": missing},
            )

        return {
            "description": prompt.description,
            "messages": [
                {
                    "role": "user",
                    "content": {"type": "text", "text": prompt.render(values)},
                }
            ],
        }

    def __contains__(self, name: str) -> bool:
        """Check if a tool is registered (for 'in' operator)."""
        return name in self._tools

    def __len__(self) -> int:
        """Return the number of registered tools."""
        return len(self._tools)


def build_registry(read_only: bool = False) -> OperationRegistry:
    """
    Build the registry of every BusinessMap operation.

    Args:
        read_only: Skip mutating tools.

    Returns:
        A populated OperationRegistry.
    """
    from mcp_businessmap.prompts import PROMPTS
    from mcp_businessmap.resources import RESOURCES
    from mcp_businessmap.tools import ALL_TOOLS

    registry = OperationRegistry(read_only=read_only)
    registry.register_tools(ALL_TOOLS)
    for resource in RESOURCES:
        registry.register_resource(resource)
    for prompt in PROMPTS:
        registry.register_prompt(prompt)

    logger.info(
        "Operation registry built",
        extra={
            "tools_count": len(registry),
            "read_only": read_only,
            "resources_count": len(RESOURCES),
            "prompts_count": len(PROMPTS),
        },
    )
    return registry
