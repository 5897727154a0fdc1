"""
Pytest configuration for the BusinessMap MCP Server tests.

Shared fixtures:
- fake_api: an in-process stand-in for the BusinessMap REST API, served
  through httpx.MockTransport
- client / ctx: a BusinessMapClient and ToolContext wired to fake_api
- app_config: a valid AppConfig pointing at the fake API
- dispatch_factory: DispatchContextFactory over the full registry and fake_api
- clock: a FakeClock for session timing
"""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from mcp_businessmap.client import BusinessMapClient
from mcp_businessmap.config import AppConfig, UpstreamConfig
from mcp_businessmap.context import ToolContext
from mcp_businessmap.routing import build_registry
from mcp_businessmap.server import DispatchContextFactory

# Configure pytest-asyncio mode
pytest_plugins = ["pytest_asyncio"]

API_URL = "https://acme.kanbanize.com/api/v2"
API_TOKEN = "secret-token"

_EMPTY = object()


class FakeBusinessMapAPI:
    """
    Minimal BusinessMap API served from a route table.

    Unknown routes answer 404 with a BusinessMap-style error body.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], tuple[int, Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        data: Any = None,
        *,
        status: int = 200,
        body: Any = _EMPTY,
    ) -> None:
        """Answer ``method path`` with ``{"data": data}`` (or a raw body)."""
        payload = {"data": data} if body is _EMPTY else body
        self.routes[(method, path)] = (status, payload)

    def add_error(self, method: str, path: str, status: int, message: str) -> None:
        self.add(method, path, status=status, body={"error": {"message": message}})

    def add_no_content(self, method: str, path: str) -> None:
        self.add(method, path, status=204, body=None)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api/v2")
        route = self.routes.get((request.method, path))
        if route is None:
            return httpx.Response(
                404, json={"error": {"message": f"No route for {request.method} {path}"}}
            )
        status, payload = route
        if payload is None:
            return httpx.Response(status)
        return httpx.Response(status, json=payload)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]

    def paths(self) -> list[str]:
        return [r.url.path.removeprefix("/api/v2") for r in self.requests]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


@pytest.fixture
def fake_api() -> FakeBusinessMapAPI:
    """A fake API that accepts the token."""
    api = FakeBusinessMapAPI()
    api.add("GET", "/me", {"user_id": 1, "username": "tester"})
    return api


@pytest.fixture
def client(fake_api: FakeBusinessMapAPI) -> BusinessMapClient:
    """A client talking to the fake API."""
    return BusinessMapClient(API_URL, API_TOKEN, transport=fake_api.transport)


@pytest.fixture
def ctx(client: BusinessMapClient) -> ToolContext:
    """A tool context without a default workspace."""
    return ToolContext(tool_name="test", client=client, request_id=1)


@pytest.fixture
def app_config() -> AppConfig:
    """A valid configuration for the HTTP transport."""
    return AppConfig(
        upstream=UpstreamConfig(api_url=API_URL, api_token=API_TOKEN),
        transport={"type": "http"},
    )


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dispatch_factory(
    app_config: AppConfig, fake_api: FakeBusinessMapAPI
) -> DispatchContextFactory:
    """Builds dispatch contexts whose clients talk to fake_api."""
    return DispatchContextFactory(app_config, build_registry(), fake_api.transport)
