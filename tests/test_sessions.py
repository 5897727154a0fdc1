"""
Tests for session bookkeeping.

This test module validates:
- Session state machine transitions
- SessionStore registration and identifier uniqueness
- SessionManager create/open/close/discard lifecycle
- Idle expiry and shutdown of all sessions
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeClock
from mcp_businessmap.server import DispatchContextFactory
from mcp_businessmap.transport.errors import InvalidStateTransitionError, ServerShuttingDownError
from mcp_businessmap.transport.sessions import (
    Session,
    SessionManager,
    SessionState,
    SessionStore,
)

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def manager(clock: FakeClock) -> SessionManager:
    return SessionManager(clock=clock)


async def open_session(
    manager: SessionManager, dispatch_factory: DispatchContextFactory
) -> Session:
    session = manager.create(dispatch_factory())
    await manager.open(session)
    return session


# =============================================================================
# Tests for Session
# =============================================================================


class TestSession:
    """Tests for the Session state machine and activity tracking."""

    def test_valid_transitions(
        self, manager: SessionManager, dispatch_factory: DispatchContextFactory
    ) -> None:
        """Test the happy path through every state."""
        session = manager.create(dispatch_factory())
        assert session.state == SessionState.CREATED

        session.transition(SessionState.ACTIVE)
        session.transition(SessionState.CLOSING)
        session.transition(SessionState.CLOSED)
        assert session.state == SessionState.CLOSED

    @pytest.mark.parametrize(
        ("path", "target"),
        [
            ([], SessionState.CLOSED),
            ([SessionState.ACTIVE], SessionState.CREATED),
            ([SessionState.ACTIVE], SessionState.ACTIVE),
            ([SessionState.CLOSING, SessionState.CLOSED], SessionState.ACTIVE),
        ],
    )
    def test_invalid_transitions(
        self,
        manager: SessionManager,
        dispatch_factory: DispatchContextFactory,
        path: list[SessionState],
        target: SessionState,
    ) -> None:
        """Test disallowed transitions raise."""
        session = manager.create(dispatch_factory())
        for state in path:
            session.transition(state)

        with pytest.raises(InvalidStateTransitionError, match=session.session_id):
            session.transition(target)

    def test_begin_close_once(
        self, manager: SessionManager, dispatch_factory: DispatchContextFactory
    ) -> None:
        """Test only the first close attempt wins."""
        session = manager.create(dispatch_factory())

        assert session.begin_close() is True
        assert session.begin_close() is False
        assert session.state == SessionState.CLOSING

    def test_touch_never_moves_back(
        self, manager: SessionManager, dispatch_factory: DispatchContextFactory
    ) -> None:
        """Test last activity is monotonically non-decreasing."""
        session = manager.create(dispatch_factory())

        session.touch(1500.0)
        session.touch(1200.0)

        assert session.last_activity == 1500.0
        assert session.idle_for(1600.0) == 100.0


# =============================================================================
# Tests for SessionStore
# =============================================================================


class TestSessionStore:
    """Tests for SessionStore."""

    async def test_put_get_remove(
        self, manager: SessionManager, dispatch_factory: DispatchContextFactory
    ) -> None:
        """Test basic registration."""
        store = SessionStore()
        session = manager.create(dispatch_factory())

        await store.put(session)

        assert session.session_id in store
        assert store.get(session.session_id) is session
        assert len(store) == 1
        assert await store.remove(session.session_id) is session
        assert await store.remove(session.session_id) is None
        assert len(store) == 0

    async def test_duplicate_put_raises(
        self, manager: SessionManager, dispatch_factory: DispatchContextFactory
    ) -> None:
        """Test a registered ID cannot be registered again."""
        store = SessionStore()
        session = manager.create(dispatch_factory())
        await store.put(session)

        with pytest.raises(ValueError, match="already registered"):
            await store.put(session)

    async def test_remove_if(
        self, manager: SessionManager, dispatch_factory: DispatchContextFactory
    ) -> None:
        """Test conditional removal only removes when the predicate holds."""
        store = SessionStore()
        session = manager.create(dispatch_factory())
        await store.put(session)

        assert await store.remove_if(session.session_id, lambda s: False) is None
        assert session.session_id in store
        assert await store.remove_if(session.session_id, lambda s: True) is session
        assert session.session_id not in store
        assert await store.remove_if(session.session_id, lambda s: True) is None


# =============================================================================
# Tests for SessionManager
# =============================================================================


class TestSessionManager:
    """Tests for the session lifecycle owner."""

    def test_session_ids_are_unique(self, manager: SessionManager) -> None:
        """Test generated identifiers are distinct."""
        ids = {manager.new_session_id() for _ in range(100)}
        assert len(ids) == 100

    async def test_id_collision_regenerates(
        self, clock: FakeClock, dispatch_factory: DispatchContextFactory
    ) -> None:
        """Test an ID held by a live or handshaking session is not handed out."""
        candidates = iter(["a", "a", "b", "a", "b", "c"])
        manager = SessionManager(clock=clock, id_factory=lambda: next(candidates))

        live = manager.create(dispatch_factory())
        await manager.open(live)
        handshaking = manager.create(dispatch_factory())
        third = manager.create(dispatch_factory())

        assert (live.session_id, handshaking.session_id, third.session_id) == ("a", "b", "c")

    async def test_closed_ids_are_not_remembered(
        self, manager: SessionManager, dispatch_factory: DispatchContextFactory
    ) -> None:
        """Test closed and discarded sessions leave no bookkeeping behind."""
        for _ in range(20):
            session = await open_session(manager, dispatch_factory)
            await manager.close(session.session_id, "client")
            await manager.discard(manager.create(dispatch_factory()))

        assert len(manager) == 0
        assert manager._pending == set()

    def test_create_is_not_routable(
        self, manager: SessionManager, dispatch_factory: DispatchContextFactory, clock: FakeClock
    ) -> None:
        """Test a created session is not in the store yet."""
        session = manager.create(dispatch_factory())

        assert session.state == SessionState.CREATED
        assert manager.get(session.session_id) is None
        assert session.transport.session_id == session.session_id
        assert session.created_at == session.last_activity == clock.now

    async def test_open(
        self, manager: SessionManager, dispatch_factory: DispatchContextFactory
    ) -> None:
        """Test opening registers the session and tags its dispatcher."""
        session = await open_session(manager, dispatch_factory)

        assert session.state == SessionState.ACTIVE
        assert manager.get(session.session_id) is session
        assert session.dispatcher.session_id == session.session_id
        assert len(manager) == 1

    async def test_touch_uses_clock(
        self,
        manager: SessionManager,
        dispatch_factory: DispatchContextFactory,
        clock: FakeClock,
    ) -> None:
        """Test touching records the current clock time."""
        session = await open_session(manager, dispatch_factory)
        clock.advance(30)

        manager.touch(session)

        assert session.last_activity == clock.now

    async def test_close(
        self, manager: SessionManager, dispatch_factory: DispatchContextFactory
    ) -> None:
        """Test closing unregisters and releases the session."""
        session = await open_session(manager, dispatch_factory)

        assert await manager.close(session.session_id, "client") is True

        assert manager.get(session.session_id) is None
        assert session.state == SessionState.CLOSED
        assert session.transport.closed is True
        assert session.dispatcher.closed is True

    async def test_close_is_idempotent(
        self, manager: SessionManager, dispatch_factory: DispatchContextFactory
    ) -> None:
        """Test a second close is a no-op."""
        session = await open_session(manager, dispatch_factory)

        assert await manager.close(session.session_id, "client") is True
        assert await manager.close(session.session_id, "idle") is False
        assert await manager.close("unknown", "client") is False

    async def test_concurrent_close_tears_down_once(
        self, manager: SessionManager, dispatch_factory: DispatchContextFactory
    ) -> None:
        """Test racing closes tear a session down exactly once."""
        session = await open_session(manager, dispatch_factory)

        results = await asyncio.gather(
            manager.close(session.session_id, "client"),
            manager.close(session.session_id, "idle"),
        )

        assert sorted(results) == [False, True]
        assert session.state == SessionState.CLOSED

    async def test_teardown_failure_still_closes(
        self,
        manager: SessionManager,
        dispatch_factory: DispatchContextFactory,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test a failing dispatcher close does not stop the session close."""
        session = await open_session(manager, dispatch_factory)

        async def broken_aclose() -> None:
            raise RuntimeError("pool already gone")

        monkeypatch.setattr(session.dispatcher, "aclose", broken_aclose)

        assert await manager.close(session.session_id, "client") is True
        assert session.state == SessionState.CLOSED
        assert session.transport.closed is True

    async def test_discard(
        self, manager: SessionManager, dispatch_factory: DispatchContextFactory
    ) -> None:
        """Test a failed handshake leaves nothing behind."""
        session = manager.create(dispatch_factory())

        await manager.discard(session)

        assert session.state == SessionState.CLOSED
        assert session.dispatcher.closed is True
        assert len(manager) == 0
        assert session.session_id not in manager._pending

    async def test_expired(
        self,
        manager: SessionManager,
        dispatch_factory: DispatchContextFactory,
        clock: FakeClock,
    ) -> None:
        """Test only sessions idle beyond the timeout expire."""
        stale = await open_session(manager, dispatch_factory)
        clock.advance(50)
        fresh = await open_session(manager, dispatch_factory)
        clock.advance(20)

        assert manager.expired(clock.now, idle_timeout=60) == [stale.session_id]
        assert manager.expired(clock.now, idle_timeout=70) == []
        assert set(manager.expired(clock.now, idle_timeout=10)) == {
            stale.session_id,
            fresh.session_id,
        }

    async def test_close_all(
        self, manager: SessionManager, dispatch_factory: DispatchContextFactory
    ) -> None:
        """Test shutdown closes every session."""
        sessions = [await open_session(manager, dispatch_factory) for _ in range(3)]

        assert await manager.close_all() == 3

        assert len(manager) == 0
        assert all(s.state == SessionState.CLOSED for s in sessions)
        assert await manager.close_all() == 0

    async def test_open_after_close_all_refused(
        self, manager: SessionManager, dispatch_factory: DispatchContextFactory
    ) -> None:
        """Test a handshake finishing after shutdown cannot register its session."""
        late = manager.create(dispatch_factory())
        await manager.close_all()

        with pytest.raises(ServerShuttingDownError):
            await manager.open(late)

        assert manager.shutting_down is True
        assert late.state == SessionState.CREATED
        assert len(manager) == 0

        await manager.discard(late)
        assert late.dispatcher.closed is True


# =============================================================================
# Tests for close_if_idle
# =============================================================================


class TestCloseIfIdle:
    """Tests for conditional idle close."""

    async def test_closes_idle_session(
        self,
        manager: SessionManager,
        dispatch_factory: DispatchContextFactory,
        clock: FakeClock,
    ) -> None:
        """Test a session still idle at removal time is closed."""
        session = await open_session(manager, dispatch_factory)
        clock.advance(61)

        assert await manager.close_if_idle(session.session_id, idle_timeout=60) is True
        assert session.state == SessionState.CLOSED
        assert session.dispatcher.closed is True

    async def test_keeps_recently_touched_session(
        self,
        manager: SessionManager,
        dispatch_factory: DispatchContextFactory,
        clock: FakeClock,
    ) -> None:
        """Test activity recorded after the candidate check keeps the session."""
        session = await open_session(manager, dispatch_factory)
        clock.advance(61)
        assert manager.expired(clock.now, idle_timeout=60) == [session.session_id]

        manager.touch(session)

        assert await manager.close_if_idle(session.session_id, idle_timeout=60) is False
        assert manager.get(session.session_id) is session
        assert session.state == SessionState.ACTIVE

    async def test_unknown_session(self, manager: SessionManager) -> None:
        """Test an absent session is reported as not closed."""
        assert await manager.close_if_idle("unknown", idle_timeout=60) is False

    async def test_explicit_clock(
        self, manager: SessionManager, dispatch_factory: DispatchContextFactory
    ) -> None:
        """Test idleness can be measured against another clock."""
        session = await open_session(manager, dispatch_factory)

        closed = await manager.close_if_idle(
            session.session_id, idle_timeout=60, clock=lambda: session.last_activity + 61
        )

        assert closed is True
