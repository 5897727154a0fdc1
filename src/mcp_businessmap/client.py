"""
Async client for the BusinessMap (Kanbanize) REST API v2.

Every MCP session owns one BusinessMapClient (and therefore one
httpx.AsyncClient connection pool). Sessions share only the immutable
credentials taken from UpstreamConfig.

Responses use the envelope ``{"data": <payload>}``; the client unwraps it.
Failures are normalized into UpstreamError:
- ``BusinessMap API Error: <error.message from the body, or HTTP reason>``
- ``Network Error: <transport failure>``
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from mcp_businessmap.errors import UpstreamError
from mcp_businessmap.logging import get_logger

if TYPE_CHECKING:
    from mcp_businessmap.config import UpstreamConfig

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
API_DOCUMENTATION_URL = "https://businessmap.io/api"


def _clean_params(params: dict[str, Any] | None) -> dict[str, Any]:
    """Drop unset values and join list values with commas."""
    if not params:
        return {}
    cleaned: dict[str, Any] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            cleaned[key] = ",".join(str(item) for item in value)
        else:
            cleaned[key] = value
    return cleaned


def _extract_api_message(response: httpx.Response) -> str | None:
    """Return ``error.message`` from an error body, if the body has one."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
    return None


class BusinessMapClient:
    """
    Async client for the BusinessMap API.

    Example:
        >>> async with BusinessMapClient("https://acme.kanbanize.com/api/v2", "key") as client:
        ...     boards = await client.get_boards()
    """

    def __init__(
        self,
        api_url: str,
        api_token: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            api_url: API base URL.
            api_token: API key sent as the ``apikey`` header.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self._api_url = api_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self._api_url,
            headers={
                "apikey": api_token,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )
        self._initialized = False

    @classmethod
    def from_config(
        cls,
        config: UpstreamConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> BusinessMapClient:
        """Create a client from the upstream section of the configuration."""
        return cls(
            config.api_url,
            config.api_token,
            timeout=config.timeout_seconds,
            transport=transport,
        )

    @property
    def api_url(self) -> str:
        """Return the API base URL."""
        return self._api_url

    @property
    def initialized(self) -> bool:
        """Whether initialize() has verified the connection."""
        return self._initialized

    @property
    def closed(self) -> bool:
        """Whether the underlying connection pool has been closed."""
        return self._http.is_closed

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._http.aclose()

    async def __aenter__(self) -> BusinessMapClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # =========================================================================
    # Request plumbing
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """
        Perform one API call and unwrap the ``data`` envelope.

        Raises:
            UpstreamError: On HTTP error status or transport failure.
        """
        try:
            response = await self._http.request(
                method,
                path,
                params=_clean_params(params) or None,
                json=json,
            )
        except httpx.HTTPError as e:
            raise UpstreamError.from_network_failure(str(e) or type(e).__name__) from e

        if response.is_error:
            message = _extract_api_message(response) or (
                f"Request failed with status code {response.status_code}"
            )
            logger.debug(
                "BusinessMap API call failed",
                extra={
                    "http_method": method,
                    "path": path,
                    "status_code": response.status_code,
                },
            )
            raise UpstreamError.from_api_message(message, response.status_code)

        if response.status_code == 204 or not response.content:
            return None

        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamError.from_api_message(
                "Invalid JSON in response", response.status_code
            ) from e

        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    # =========================================================================
    # Connection check
    # =========================================================================

    async def health_check(self) -> bool:
        """Check that the API is reachable and the token is accepted."""
        try:
            await self._request("GET", "/me")
        except UpstreamError as e:
            logger.error("Health check failed: %s", e.message)
            return False
        return True

    async def get_api_info(self) -> dict[str, Any]:
        """Return connectivity information (the API has no /info endpoint)."""
        try:
            await self._request("GET", "/me")
        except UpstreamError as e:
            raise UpstreamError(
                f"API connection failed: {e.message}", status_code=e.status_code
            ) from e
        return {
            "message": "API is responding",
            "endpoint": "/me",
            "status": "healthy",
            "api_version": "v2",
            "api_url": self._api_url,
            "documentation": API_DOCUMENTATION_URL,
        }

    async def initialize(self) -> None:
        """
        Verify the connection to the BusinessMap API.

        Raises:
            UpstreamError: If the API is unreachable or rejects the token.
        """
        if self._initialized:
            return

        try:
            if not await self.health_check():
                raise UpstreamError(
                    "API connection failed - please check your API URL and token"
                )
            try:
                await self.get_api_info()
            except UpstreamError as e:
                if e.status_code == 401:
                    raise UpstreamError(
                        "Authentication failed - please verify your API token "
                        "has the correct permissions",
                        status_code=401,
                    ) from e
                raise UpstreamError(
                    f"API verification failed: {e.message}", status_code=e.status_code
                ) from e
        except UpstreamError as e:
            raise UpstreamError(
                f"Failed to initialize BusinessMap client: {e.message}",
                status_code=e.status_code,
            ) from e

        self._initialized = True

    # =========================================================================
    # Workspaces
    # =========================================================================

    async def get_workspaces(self) -> Any:
        return await self._request("GET", "/workspaces")

    async def get_workspace(self, workspace_id: int) -> Any:
        return await self._request("GET", f"/workspaces/{workspace_id}")

    async def create_workspace(self, params: dict[str, Any]) -> Any:
        return await self._request("POST", "/workspaces", json=params)

    # =========================================================================
    # Boards, columns and lanes
    # =========================================================================

    async def get_boards(self, filters: dict[str, Any] | None = None) -> Any:
        return await self._request("GET", "/boards", params=filters)

    async def get_board(self, board_id: int) -> Any:
        return await self._request("GET", f"/boards/{board_id}")

    async def create_board(self, params: dict[str, Any]) -> Any:
        return await self._request("POST", "/boards", json=params)

    async def get_board_structure(self, board_id: int) -> Any:
        return await self._request("GET", f"/boards/{board_id}/structure")

    async def get_current_board_structure(self, board_id: int) -> Any:
        return await self._request("GET", f"/boards/{board_id}/currentStructure")

    async def get_columns(self, board_id: int) -> Any:
        return await self._request("GET", f"/boards/{board_id}/columns")

    async def create_column(self, board_id: int, params: dict[str, Any]) -> Any:
        return await self._request("POST", f"/boards/{board_id}/columns", json=params)

    async def update_column(
        self, board_id: int, column_id: int, params: dict[str, Any]
    ) -> Any:
        return await self._request(
            "PATCH", f"/boards/{board_id}/columns/{column_id}", json=params
        )

    async def delete_column(self, board_id: int, column_id: int) -> None:
        await self._request("DELETE", f"/boards/{board_id}/columns/{column_id}")

    async def get_lanes(self, board_id: int) -> Any:
        return await self._request("GET", f"/boards/{board_id}/lanes")

    async def get_lane(self, lane_id: int) -> Any:
        return await self._request("GET", f"/lanes/{lane_id}")

    async def create_lane(self, params: dict[str, Any]) -> Any:
        return await self._request("POST", "/lanes", json=params)

    # =========================================================================
    # Cards
    # =========================================================================

    async def get_cards(
        self, board_id: int, filters: dict[str, Any] | None = None
    ) -> Any:
        params: dict[str, Any] = {"board_id": board_id}
        params.update(filters or {})
        return await self._request("GET", "/cards", params=params)

    async def get_card(self, card_id: int) -> Any:
        return await self._request("GET", f"/cards/{card_id}")

    async def create_card(self, params: dict[str, Any]) -> Any:
        return await self._request("POST", "/cards", json=params)

    async def update_card(self, card_id: int, fields: dict[str, Any]) -> Any:
        return await self._request("PATCH", f"/cards/{card_id}", json=fields)

    async def move_card(
        self,
        card_id: int,
        column_id: int,
        lane_id: int | None = None,
        position: int | None = None,
    ) -> Any:
        body: dict[str, Any] = {"column_id": column_id}
        if lane_id is not None:
            body["lane_id"] = lane_id
        if position is not None:
            body["position"] = position
        return await self._request("PATCH", f"/cards/{card_id}", json=body)

    async def delete_card(self, card_id: int) -> None:
        await self._request("DELETE", f"/cards/{card_id}")

    async def get_card_types(self) -> Any:
        return await self._request("GET", "/cardTypes")

    async def get_card_custom_fields(self, card_id: int) -> Any:
        return await self._request("GET", f"/cards/{card_id}/customFields")

    async def get_card_outcomes(self, card_id: int) -> Any:
        return await self._request("GET", f"/cards/{card_id}/outcomes")

    async def get_card_history(self, card_id: int, outcome_id: int) -> Any:
        return await self._request(
            "GET", f"/cards/{card_id}/outcomes/{outcome_id}/history"
        )

    async def get_card_linked_cards(self, card_id: int) -> Any:
        return await self._request("GET", f"/cards/{card_id}/linkedCards")

    async def get_card_subtasks(self, card_id: int) -> Any:
        return await self._request("GET", f"/cards/{card_id}/subtasks")

    async def get_card_subtask(self, card_id: int, subtask_id: int) -> Any:
        return await self._request("GET", f"/cards/{card_id}/subtasks/{subtask_id}")

    async def create_card_subtask(self, card_id: int, params: dict[str, Any]) -> Any:
        return await self._request("POST", f"/cards/{card_id}/subtasks", json=params)

    async def get_card_parents(self, card_id: int) -> Any:
        return await self._request("GET", f"/cards/{card_id}/parents")

    async def get_card_parent(self, card_id: int, parent_card_id: int) -> Any:
        return await self._request("GET", f"/cards/{card_id}/parents/{parent_card_id}")

    async def add_card_parent(self, card_id: int, parent_card_id: int) -> Any:
        return await self._request("PUT", f"/cards/{card_id}/parents/{parent_card_id}")

    async def remove_card_parent(self, card_id: int, parent_card_id: int) -> None:
        await self._request("DELETE", f"/cards/{card_id}/parents/{parent_card_id}")

    async def get_card_parent_graph(self, card_id: int) -> Any:
        return await self._request("GET", f"/cards/{card_id}/parentGraph")

    async def get_card_children(self, card_id: int) -> Any:
        return await self._request("GET", f"/cards/{card_id}/children")

    async def block_card(self, card_id: int, reason: str) -> None:
        await self._request(
            "PUT", f"/cards/{card_id}/blockReason", json=[{"comment": reason}]
        )

    async def unblock_card(self, card_id: int) -> None:
        await self._request("DELETE", f"/cards/{card_id}/blockReason")

    async def add_predecessor(
        self,
        card_id: int,
        predecessor_card_id: int,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return await self._request(
            "PUT",
            f"/cards/{card_id}/predecessors/{predecessor_card_id}",
            json=params or {},
        )

    async def remove_predecessor(self, card_id: int, predecessor_card_id: int) -> None:
        await self._request(
            "DELETE", f"/cards/{card_id}/predecessors/{predecessor_card_id}"
        )

    # =========================================================================
    # Tags and stickers
    # =========================================================================

    async def create_tag(self, params: dict[str, Any]) -> Any:
        return await self._request("POST", "/tags", json=params)

    async def add_tag_to_card(self, card_id: int, tag_id: int) -> None:
        await self._request("PUT", f"/cards/{card_id}/tags/{tag_id}")

    async def remove_tag_from_card(self, card_id: int, tag_id: int) -> None:
        await self._request("DELETE", f"/cards/{card_id}/tags/{tag_id}")

    async def add_sticker_to_card(self, card_id: int, sticker_id: int) -> Any:
        return await self._request(
            "POST", f"/cards/{card_id}/stickers", json={"sticker_id": sticker_id}
        )

    async def remove_sticker_from_card(self, card_id: int, sticker_card_id: int) -> None:
        await self._request("DELETE", f"/cards/{card_id}/stickers/{sticker_card_id}")

    # =========================================================================
    # Comments
    # =========================================================================

    async def get_card_comments(self, card_id: int) -> Any:
        return await self._request("GET", f"/cards/{card_id}/comments")

    async def get_card_comment(self, card_id: int, comment_id: int) -> Any:
        return await self._request("GET", f"/cards/{card_id}/comments/{comment_id}")

    async def create_card_comment(self, card_id: int, params: dict[str, Any]) -> Any:
        return await self._request("POST", f"/cards/{card_id}/comments", json=params)

    async def update_card_comment(
        self, card_id: int, comment_id: int, params: dict[str, Any]
    ) -> Any:
        return await self._request(
            "PATCH", f"/cards/{card_id}/comments/{comment_id}", json=params
        )

    async def delete_card_comment(self, card_id: int, comment_id: int) -> None:
        await self._request("DELETE", f"/cards/{card_id}/comments/{comment_id}")

    # =========================================================================
    # Users
    # =========================================================================

    async def get_users(self) -> Any:
        return await self._request("GET", "/users")

    async def get_user(self, user_id: int) -> Any:
        return await self._request("GET", f"/users/{user_id}")

    async def get_current_user(self) -> Any:
        return await self._request("GET", "/me")

    async def invite_user(self, params: dict[str, Any]) -> Any:
        return await self._request("POST", "/users/invite", json=params)

    # =========================================================================
    # Workflows
    # =========================================================================

    async def get_workflow_cycle_time_columns(
        self, board_id: int, workflow_id: int
    ) -> Any:
        return await self._request(
            "GET", f"/boards/{board_id}/workflows/{workflow_id}/cycleTimeColumns"
        )

    async def get_workflow_effective_cycle_time_columns(
        self, board_id: int, workflow_id: int
    ) -> Any:
        return await self._request(
            "GET",
            f"/boards/{board_id}/workflows/{workflow_id}/effectiveCycleTimeColumns",
        )
