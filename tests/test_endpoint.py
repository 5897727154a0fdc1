"""
Tests for the HTTP application.

This test module validates:
- Session creation through the initialize handshake, including concurrent
  requests and failures while the session is built
- Routing by the mcp-session-id header (unknown, missing, closed)
- Client termination and shutdown cleanup
- Activity tracking, health probe and the Origin/Host gatekeeper
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from typing import Any

import httpx
import pytest
from starlette.applications import Starlette
from starlette.testclient import TestClient

from conftest import FakeBusinessMapAPI, FakeClock
from mcp_businessmap.config import AppConfig
from mcp_businessmap.server import DispatchContextFactory
from mcp_businessmap.transport import SESSION_ID_HEADER, SessionManager, SessionState, create_app

# =============================================================================
# Helper Functions and Fixtures
# =============================================================================

BASE_URL = "http://localhost:3000"

INITIALIZE = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "initialize",
    "params": {
        "protocolVersion": "2025-06-18",
        "capabilities": {},
        "clientInfo": {"name": "pytest", "version": "1.0"},
    },
}


def rpc(method: str, request_id: int = 2, params: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or {}}


@pytest.fixture
def manager(clock: FakeClock) -> SessionManager:
    return SessionManager(clock=clock)


@pytest.fixture
def app(
    app_config: AppConfig, dispatch_factory: DispatchContextFactory, manager: SessionManager
) -> Starlette:
    return create_app(app_config, dispatch_factory, manager=manager)


@pytest.fixture
def http(app: Starlette) -> Iterator[TestClient]:
    with TestClient(app, base_url=BASE_URL) as test_client:
        yield test_client


def open_session(http: TestClient) -> str:
    response = http.post("/mcp", json=INITIALIZE)
    assert response.status_code == 200
    return response.headers[SESSION_ID_HEADER]


# =============================================================================
# Tests for Session Creation
# =============================================================================


class TestInitialize:
    """Tests for creating sessions."""

    def test_initialize_creates_session(
        self, http: TestClient, manager: SessionManager
    ) -> None:
        """Test initialize answers with a new session ID."""
        response = http.post("/mcp", json=INITIALIZE)

        assert response.status_code == 200
        session_id = response.headers[SESSION_ID_HEADER]
        assert response.json()["result"]["serverInfo"]["name"] == "businessmap-mcp"
        session = manager.get(session_id)
        assert session is not None
        assert session.state == SessionState.ACTIVE

    def test_sessions_are_isolated(self, http: TestClient, manager: SessionManager) -> None:
        """Test each initialize gets its own ID and dispatch context."""
        first = open_session(http)
        second = open_session(http)

        assert first != second
        assert len(manager) == 2
        assert manager.get(first).dispatcher is not manager.get(second).dispatcher
        assert manager.get(first).dispatcher.client is not manager.get(second).dispatcher.client

    def test_handshake_failure_leaves_no_session(
        self, http: TestClient, manager: SessionManager
    ) -> None:
        """Test a failed handshake is a 500 and nothing is registered."""
        response = http.post("/mcp", json={**INITIALIZE, "params": [1]})

        assert response.status_code == 500
        assert response.json()["error"].startswith("Initialize failed:")
        assert SESSION_ID_HEADER not in response.headers
        assert len(manager) == 0

    def test_factory_failure(self, app_config: AppConfig) -> None:
        """Test an unexpected failure is a generic 500."""

        def broken_factory() -> Any:
            raise RuntimeError("no upstream")

        with TestClient(create_app(app_config, broken_factory), base_url=BASE_URL) as http:
            response = http.post("/mcp", json=INITIALIZE)

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}

    def test_session_construction_failure_closes_dispatcher(
        self, app_config: AppConfig, dispatch_factory: DispatchContextFactory, clock: FakeClock
    ) -> None:
        """Test the dispatch context is released when the session cannot be built."""
        built: list[Any] = []

        def recording_factory() -> Any:
            dispatcher = dispatch_factory()
            built.append(dispatcher)
            return dispatcher

        def broken_ids() -> str:
            raise RuntimeError("entropy exhausted")

        manager = SessionManager(clock=clock, id_factory=broken_ids)
        app = create_app(app_config, recording_factory, manager=manager)

        with TestClient(app, base_url=BASE_URL) as http:
            response = http.post("/mcp", json=INITIALIZE)

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to initialize session"}
        assert len(built) == 1
        assert built[0].closed is True
        assert built[0].client.closed is True
        assert len(manager) == 0

    async def test_concurrent_initialize(self, app: Starlette, manager: SessionManager) -> None:
        """Test concurrent initialize requests each get their own session."""
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as client:
            responses = await asyncio.gather(
                *(client.post("/mcp", json=INITIALIZE) for _ in range(10))
            )

        assert [r.status_code for r in responses] == [200] * 10
        session_ids = {r.headers[SESSION_ID_HEADER] for r in responses}
        assert len(session_ids) == 10
        assert len(manager) == 10
        assert all(manager.get(session_id) is not None for session_id in session_ids)

        await manager.close_all()

    async def test_handshake_finishing_after_shutdown(
        self,
        app_config: AppConfig,
        dispatch_factory: DispatchContextFactory,
        manager: SessionManager,
    ) -> None:
        """Test a session whose handshake outlives shutdown is discarded."""
        built: list[Any] = []

        def shutting_down_factory() -> Any:
            dispatcher = dispatch_factory()
            real_handle = dispatcher.handle_payload

            async def handle_then_shut_down(payload: Any) -> Any:
                response = await real_handle(payload)
                await manager.close_all()
                return response

            dispatcher.handle_payload = handle_then_shut_down
            built.append(dispatcher)
            return dispatcher

        app = create_app(app_config, shutting_down_factory, manager=manager)
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as client:
            response = await client.post("/mcp", json=INITIALIZE)

        assert response.status_code == 503
        assert response.json() == {"error": "Server is shutting down"}
        assert SESSION_ID_HEADER not in response.headers
        assert len(manager) == 0
        assert built[0].closed is True


# =============================================================================
# Tests for Session Routing
# =============================================================================


class TestRouting:
    """Tests for requests that carry (or lack) a session ID."""

    def test_tool_call(self, http: TestClient, fake_api: FakeBusinessMapAPI) -> None:
        """Test a request with a session ID reaches the session's dispatcher."""
        fake_api.add("GET", "/workspaces", [{"workspace_id": 1, "name": "Ops"}])
        session_id = open_session(http)

        response = http.post(
            "/mcp",
            json=rpc("tools/call", params={"name": "list_workspaces", "arguments": {}}),
            headers={SESSION_ID_HEADER: session_id},
        )

        assert response.status_code == 200
        assert response.headers[SESSION_ID_HEADER] == session_id
        assert '"name": "Ops"' in response.json()["result"]["content"][0]["text"]

    def test_notification_accepted(self, http: TestClient) -> None:
        """Test a notification is answered with 202."""
        session_id = open_session(http)

        response = http.post(
            "/mcp",
            json={"jsonrpc": "2.0", "method": "notifications/initialized"},
            headers={SESSION_ID_HEADER: session_id},
        )

        assert response.status_code == 202

    def test_unknown_session(self, http: TestClient) -> None:
        """Test an unknown session ID is a 404."""
        response = http.post("/mcp", json=rpc("ping"), headers={SESSION_ID_HEADER: "nope"})

        assert response.status_code == 404
        assert response.json() == {"error": "Session not found"}

    def test_initialize_with_unknown_session(self, http: TestClient) -> None:
        """Test initialize naming an unknown session does not create one."""
        response = http.post("/mcp", json=INITIALIZE, headers={SESSION_ID_HEADER: "nope"})
        assert response.status_code == 404

    @pytest.mark.parametrize("method", ["post", "get", "delete"])
    def test_missing_session_id(self, http: TestClient, method: str) -> None:
        """Test non-initialize requests need a session ID."""
        if method == "post":
            response = http.post("/mcp", json=rpc("ping"))
        else:
            response = getattr(http, method)("/mcp")

        assert response.status_code == 400
        assert response.json() == {"error": "Bad Request: No valid session ID provided"}

    def test_malformed_body_without_session(self, http: TestClient) -> None:
        """Test an unparsable body is a 400."""
        response = http.post(
            "/mcp", content=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"].startswith("Parse error")

    def test_forwarding_error_keeps_session(
        self, http: TestClient, manager: SessionManager, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test an unexpected error while forwarding is a 500 and the session survives."""
        session_id = open_session(http)
        session = manager.get(session_id)
        real_handle = session.transport.handle_request
        calls: list[str] = []

        async def fail_once(request: Any) -> Any:
            calls.append(request.method)
            if len(calls) == 1:
                raise RuntimeError("worker crashed")
            return await real_handle(request)

        monkeypatch.setattr(session.transport, "handle_request", fail_once)

        failed = http.post("/mcp", json=rpc("ping"), headers={SESSION_ID_HEADER: session_id})

        assert failed.status_code == 500
        assert failed.json() == {"error": "Internal server error"}
        assert manager.get(session_id) is session
        assert session.state == SessionState.ACTIVE

        retried = http.post("/mcp", json=rpc("ping"), headers={SESSION_ID_HEADER: session_id})

        assert retried.status_code == 200
        assert retried.json()["result"] == {}

    def test_activity_is_recorded(
        self, http: TestClient, manager: SessionManager, clock: FakeClock
    ) -> None:
        """Test every request refreshes the session's last activity."""
        session_id = open_session(http)
        clock.advance(1000)

        http.post("/mcp", json=rpc("ping"), headers={SESSION_ID_HEADER: session_id})

        session = manager.get(session_id)
        assert session.last_activity == clock.now
        assert manager.expired(clock.now + 1799, idle_timeout=1800) == []


# =============================================================================
# Tests for Termination
# =============================================================================


class TestTermination:
    """Tests for DELETE and shutdown."""

    def test_delete_closes_session(self, http: TestClient, manager: SessionManager) -> None:
        """Test DELETE closes the session and later requests get 404."""
        session_id = open_session(http)
        session = manager.get(session_id)

        response = http.delete("/mcp", headers={SESSION_ID_HEADER: session_id})

        assert response.status_code == 200
        assert response.json() == {"status": "closed"}
        assert session.state == SessionState.CLOSED
        assert session.dispatcher.closed is True

        again = http.post("/mcp", json=rpc("ping"), headers={SESSION_ID_HEADER: session_id})
        assert again.status_code == 404

    def test_delete_twice(self, http: TestClient) -> None:
        """Test a second DELETE finds no session."""
        session_id = open_session(http)
        http.delete("/mcp", headers={SESSION_ID_HEADER: session_id})

        response = http.delete("/mcp", headers={SESSION_ID_HEADER: session_id})

        assert response.status_code == 404

    def test_shutdown_closes_all_sessions(
        self, app: Starlette, manager: SessionManager
    ) -> None:
        """Test application shutdown closes every open session."""
        with TestClient(app, base_url=BASE_URL) as http:
            sessions = [manager.get(open_session(http)) for _ in range(2)]
            assert app.state.reaper.is_running is True

        assert len(manager) == 0
        assert all(s.state == SessionState.CLOSED for s in sessions)
        assert app.state.reaper.is_running is False


# =============================================================================
# Tests for Health and Gatekeeping
# =============================================================================


class TestHealthAndSecurity:
    """Tests for /health and the Origin/Host gatekeeper."""

    def test_health(self, http: TestClient) -> None:
        """Test the liveness probe."""
        response = http.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": "1.0.0"}

    def test_health_not_gated(self, http: TestClient) -> None:
        """Test the probe ignores the allow-lists."""
        response = http.get("/health", headers={"Host": "evil.example"})
        assert response.status_code == 200

    def test_bad_origin_rejected(self, http: TestClient, manager: SessionManager) -> None:
        """Test a disallowed Origin never reaches session handling."""
        response = http.post("/mcp", json=INITIALIZE, headers={"Origin": "http://evil.example"})

        assert response.status_code == 403
        assert response.json() == {"error": "Forbidden: invalid Origin header"}
        assert len(manager) == 0

    def test_bad_host_rejected(self, http: TestClient) -> None:
        """Test a disallowed Host is rejected."""
        response = http.post("/mcp", json=INITIALIZE, headers={"Host": "evil.example:3000"})

        assert response.status_code == 403
        assert response.json() == {"error": "Forbidden: invalid Host header"}

    def test_protection_disabled(
        self, dispatch_factory: DispatchContextFactory, app_config: AppConfig
    ) -> None:
        """Test the gatekeeper can be switched off."""
        security = app_config.security.model_copy(update={"dns_rebinding_protection": False})
        config = app_config.model_copy(update={"security": security})

        with TestClient(create_app(config, dispatch_factory), base_url=BASE_URL) as http:
            response = http.post("/mcp", json=INITIALIZE, headers={"Host": "evil.example"})

        assert response.status_code == 200
