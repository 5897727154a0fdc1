"""
Tests for Origin/Host allow-list enforcement.

This test module validates:
- AllowListPolicy normalization and matching rules
- GatekeeperMiddleware rejection before the application is reached
- Unprotected paths pass through untouched
"""

from __future__ import annotations

import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from mcp_businessmap.config import SecurityConfig
from mcp_businessmap.transport.gatekeeper import (
    INVALID_HOST_MESSAGE,
    INVALID_ORIGIN_MESSAGE,
    AllowListPolicy,
    GatekeeperMiddleware,
)

# =============================================================================
# Tests for AllowListPolicy
# =============================================================================


class TestAllowListPolicy:
    """Tests for AllowListPolicy."""

    @pytest.fixture
    def policy(self) -> AllowListPolicy:
        return AllowListPolicy.create(
            ["http://localhost", "https://App.Example.com/", " "],
            ["localhost:3000", "internal:*", "[::1]"],
        )

    def test_normalization(self, policy: AllowListPolicy) -> None:
        """Test entries are trimmed, lowercased and blank entries dropped."""
        assert policy.allowed_origins == frozenset(
            {"http://localhost", "https://app.example.com"}
        )

    def test_missing_origin_allowed(self, policy: AllowListPolicy) -> None:
        """Test non-browser requests without Origin pass."""
        assert policy.is_origin_allowed(None) is True

    @pytest.mark.parametrize(
        ("origin", "allowed"),
        [
            ("http://localhost", True),
            ("HTTPS://app.example.com", True),
            ("https://app.example.com/", True),
            ("http://evil.example", False),
            ("http://localhost:8080", False),
            ("", False),
        ],
    )
    def test_origin(self, policy: AllowListPolicy, origin: str, allowed: bool) -> None:
        """Test origins must match an entry exactly after normalization."""
        assert policy.is_origin_allowed(origin) is allowed

    @pytest.mark.parametrize(
        ("host", "allowed"),
        [
            ("localhost:3000", True),
            ("LOCALHOST:3000", True),
            ("localhost:4000", False),
            ("localhost", False),
            ("internal:8443", True),
            ("internal", False),
            ("internal:abc", False),
            ("[::1]", True),
            ("[::1]:3000", False),
            ("evil.example:3000", False),
            (None, False),
            ("", False),
        ],
    )
    def test_host(self, policy: AllowListPolicy, host: str | None, allowed: bool) -> None:
        """Test hosts match exactly or through a wildcard port."""
        assert policy.is_host_allowed(host) is allowed

    def test_wildcard_origin_port(self) -> None:
        """Test ``scheme://name:*`` accepts the origin on any port."""
        policy = AllowListPolicy.create(["http://localhost:*"], [])

        assert policy.is_origin_allowed("http://localhost:5173") is True
        assert policy.is_origin_allowed("http://localhost") is False
        assert policy.is_origin_allowed("http://localhost.evil:5173") is False

    def test_from_config(self) -> None:
        """Test the policy is built from the security settings."""
        config = SecurityConfig(
            allowed_origins="http://a.test, http://b.test",
            allowed_hosts=["a.test:80"],
        )

        policy = AllowListPolicy.from_config(config)

        assert policy.allowed_origins == frozenset({"http://a.test", "http://b.test"})
        assert policy.allowed_hosts == frozenset({"a.test:80"})

    def test_from_config_without_hosts(self) -> None:
        """Test an unset host list allows no host."""
        policy = AllowListPolicy.from_config(SecurityConfig())
        assert policy.is_host_allowed("localhost") is False


# =============================================================================
# Tests for GatekeeperMiddleware
# =============================================================================


async def ok(request: Request) -> JSONResponse:
    return JSONResponse({"path": request.url.path})


@pytest.fixture
def http_client() -> TestClient:
    app = Starlette(
        routes=[
            Route("/mcp", ok, methods=["GET", "POST"]),
            Route("/mcp/sub", ok),
            Route("/mcpx", ok),
            Route("/health", ok),
        ]
    )
    policy = AllowListPolicy.create(["http://localhost:3000"], ["localhost:3000"])
    app.add_middleware(GatekeeperMiddleware, policy=policy, protected_paths=("/mcp",))
    return TestClient(app, base_url="http://localhost:3000")


class TestGatekeeperMiddleware:
    """Tests for request rejection."""

    def test_allowed_request(self, http_client: TestClient) -> None:
        """Test an allowed Host without Origin reaches the app."""
        response = http_client.post("/mcp")

        assert response.status_code == 200
        assert response.json() == {"path": "/mcp"}

    def test_allowed_origin(self, http_client: TestClient) -> None:
        """Test an allowed Origin reaches the app."""
        response = http_client.get("/mcp", headers={"Origin": "http://localhost:3000"})
        assert response.status_code == 200

    def test_bad_origin(self, http_client: TestClient) -> None:
        """Test a disallowed Origin is rejected with 403."""
        response = http_client.post("/mcp", headers={"Origin": "http://evil.example"})

        assert response.status_code == 403
        assert response.json() == {"error": INVALID_ORIGIN_MESSAGE}

    def test_bad_host(self, http_client: TestClient) -> None:
        """Test a disallowed Host is rejected with 403."""
        response = http_client.post("/mcp", headers={"Host": "evil.example"})

        assert response.status_code == 403
        assert response.json() == {"error": INVALID_HOST_MESSAGE}

    def test_origin_checked_before_host(self, http_client: TestClient) -> None:
        """Test the Origin failure is reported when both are bad."""
        response = http_client.post(
            "/mcp", headers={"Origin": "http://evil.example", "Host": "evil.example"}
        )
        assert response.json() == {"error": INVALID_ORIGIN_MESSAGE}

    def test_sub_path_protected(self, http_client: TestClient) -> None:
        """Test paths below the protected path are checked."""
        response = http_client.get("/mcp/sub", headers={"Host": "evil.example"})
        assert response.status_code == 403

    @pytest.mark.parametrize("path", ["/health", "/mcpx"])
    def test_unprotected_paths(self, http_client: TestClient, path: str) -> None:
        """Test other paths are not filtered."""
        response = http_client.get(path, headers={"Host": "evil.example"})
        assert response.status_code == 200
