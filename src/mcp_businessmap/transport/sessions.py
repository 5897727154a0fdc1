"""
Session bookkeeping for the HTTP transport.

Session lifecycle:
- created: handshake in progress, not yet routable
- active: registered in the store, routable by ID
- closing: removed from the store, teardown in progress
- closed: transport handle and dispatch context released

Transitions:
- created -> active (handshake succeeded)
- created -> closing (handshake failed)
- active -> closing (client DELETE, idle eviction or shutdown)
- closing -> closed

The SessionStore is the only routing table. SessionManager is the single
owner of lifecycle transitions; the endpoint and the idle reaper both go
through it, so a session is torn down exactly once whoever gets there first.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING

from mcp_businessmap.logging import get_logger
from mcp_businessmap.transport.errors import (
    InvalidStateTransitionError,
    ServerShuttingDownError,
)
from mcp_businessmap.transport.streamable_http import StreamableHTTPTransport

if TYPE_CHECKING:
    from mcp_businessmap.server import DispatchContext

logger = get_logger(__name__)

Clock = Callable[[], float]


class SessionState(str, Enum):
    """States of an HTTP session."""

    CREATED = "created"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


_VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.CREATED: {SessionState.ACTIVE, SessionState.CLOSING},
    SessionState.ACTIVE: {SessionState.CLOSING},
    SessionState.CLOSING: {SessionState.CLOSED},
    SessionState.CLOSED: set(),
}


@dataclass(eq=False)
class Session:
    """
    One client session.

    Attributes:
        session_id: Opaque server-generated identifier.
        dispatcher: The session's own dispatch context.
        transport: The session's transport handle.
        created_at: Monotonic creation time in seconds.
        last_activity: Monotonic time of the last request; never decreases.
        state: Lifecycle state.
    """

    session_id: str
    dispatcher: DispatchContext
    transport: StreamableHTTPTransport
    created_at: float
    last_activity: float
    state: SessionState = SessionState.CREATED

    def touch(self, now: float) -> None:
        """Record activity. Out-of-order timestamps never move the clock back."""
        self.last_activity = max(self.last_activity, now)

    def idle_for(self, now: float) -> float:
        return now - self.last_activity

    def transition(self, target: SessionState) -> None:
        """
        Move to ``target``.

        Raises:
            InvalidStateTransitionError: If the transition is not allowed.
        """
        if target not in _VALID_TRANSITIONS[self.state]:
            raise InvalidStateTransitionError(self.session_id, self.state, target)
        self.state = target

    def begin_close(self) -> bool:
        """Enter CLOSING. Returns False if a close is already under way or done."""
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return False
        self.transition(SessionState.CLOSING)
        return True


class SessionStore:
    """
    In-memory mapping of session ID to Session.

    Mutations hold one asyncio.Lock. Only live sessions are kept; a removed
    ID is simply absent and answers as unknown.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def put(self, session: Session) -> None:
        """
        Register a session.

        Raises:
            ValueError: If the ID is already registered.
        """
        async with self._lock:
            if session.session_id in self._sessions:
                raise ValueError(f"Session {session.session_id} is already registered")
            self._sessions[session.session_id] = session

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    async def remove(self, session_id: str) -> Session | None:
        """Remove and return a session, or None if it was already absent."""
        async with self._lock:
            return self._sessions.pop(session_id, None)

    async def remove_if(
        self, session_id: str, predicate: Callable[[Session], bool]
    ) -> Session | None:
        """
        Remove a session only if ``predicate`` holds for it at removal time.

        The check and the removal happen under the lock with no suspension
        point in between.
        """
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None or not predicate(session):
                return None
            return self._sessions.pop(session_id)

    def all(self) -> list[tuple[str, Session]]:
        """Snapshot of the current entries."""
        return list(self._sessions.items())

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


class SessionManager:
    """
    Owns every session lifecycle transition.

    Once ``close_all`` has run, no further session can be opened.

    Example:
        >>> manager = SessionManager()
        >>> session = manager.create(dispatcher)
        >>> await manager.open(session)
        >>> await manager.close(session.session_id, "client")
        True
    """

    def __init__(
        self,
        store: SessionStore | None = None,
        *,
        clock: Clock = time.monotonic,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.store = store if store is not None else SessionStore()
        self.clock = clock
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        # IDs of sessions created but not yet opened or discarded
        self._pending: set[str] = set()
        self._shutting_down = False

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def new_session_id(self) -> str:
        """Generate an identifier not held by any live or handshaking session."""
        while True:
            session_id = self._id_factory()
            if session_id not in self.store and session_id not in self._pending:
                return session_id
            logger.warning("Session ID collision, regenerating")

    def create(self, dispatcher: DispatchContext) -> Session:
        """Build a CREATED session with its own transport handle. Not yet routable."""
        session_id = self.new_session_id()
        transport = StreamableHTTPTransport(
            session_id,
            dispatcher,
            on_terminate=partial(self.close, session_id, "client"),
        )
        now = self.clock()
        self._pending.add(session_id)
        return Session(
            session_id=session_id,
            dispatcher=dispatcher,
            transport=transport,
            created_at=now,
            last_activity=now,
        )

    async def open(self, session: Session) -> None:
        """
        Make a session routable once its handshake succeeded.

        Raises:
            ServerShuttingDownError: If ``close_all`` has already run.
        """
        if self._shutting_down:
            raise ServerShuttingDownError()
        session.transition(SessionState.ACTIVE)
        session.dispatcher.session_id = session.session_id
        await self.store.put(session)
        self._pending.discard(session.session_id)
        logger.info(
            "Session initialized",
            extra={"session_id": session.session_id, "active_sessions": len(self.store)},
        )

    def get(self, session_id: str) -> Session | None:
        return self.store.get(session_id)

    def touch(self, session: Session, now: float | None = None) -> None:
        session.touch(self.clock() if now is None else now)

    async def close(self, session_id: str, reason: str) -> bool:
        """
        Remove and tear down a session.

        Returns:
            True if this call closed the session, False if it was already
            absent or being closed by someone else.
        """
        session = await self.store.remove(session_id)
        return await self._finish_close(session, reason)

    async def close_if_idle(
        self, session_id: str, idle_timeout: float, *, clock: Clock | None = None
    ) -> bool:
        """
        Close a session only if it is still idle longer than ``idle_timeout``.

        Idleness is measured against the clock at removal time, so activity
        recorded after the session was picked as a candidate keeps it open.

        Args:
            session_id: Session to close.
            idle_timeout: Idle threshold in seconds.
            clock: Clock to measure against. Defaults to the manager's clock.

        Returns:
            True if this call closed the session.
        """
        read_clock = clock or self.clock
        session = await self.store.remove_if(
            session_id, lambda s: s.idle_for(read_clock()) > idle_timeout
        )
        return await self._finish_close(session, "idle")

    async def discard(self, session: Session) -> None:
        """Tear down a session whose handshake failed. It never becomes routable."""
        self._pending.discard(session.session_id)
        await self.store.remove(session.session_id)
        if not session.begin_close():
            return
        await self._teardown(session)
        session.transition(SessionState.CLOSED)
        logger.info("Session discarded", extra={"session_id": session.session_id})

    def expired(self, now: float, idle_timeout: float) -> list[str]:
        """IDs of sessions idle for longer than ``idle_timeout`` seconds."""
        return [
            session_id
            for session_id, session in self.store.all()
            if session.idle_for(now) > idle_timeout
        ]

    async def close_all(self, reason: str = "shutdown") -> int:
        """Close every session and refuse new ones. Returns how many were closed."""
        self._shutting_down = True
        closed = 0
        for session_id, _session in self.store.all():
            if await self.close(session_id, reason):
                closed += 1
        return closed

    async def _finish_close(self, session: Session | None, reason: str) -> bool:
        if session is None or not session.begin_close():
            return False

        await self._teardown(session)
        session.transition(SessionState.CLOSED)
        logger.info(
            "Session closed",
            extra={
                "session_id": session.session_id,
                "reason": reason,
                "active_sessions": len(self.store),
            },
        )
        return True

    async def _teardown(self, session: Session) -> None:
        # Teardown failures are logged and never stop the close
        try:
            await session.transport.close()
        except Exception:
            logger.exception(
                "Error closing transport handle", extra={"session_id": session.session_id}
            )
        try:
            await session.dispatcher.aclose()
        except Exception:
            logger.exception(
                "Error closing dispatch context", extra={"session_id": session.session_id}
            )

    def __len__(self) -> int:
        return len(self.store)
