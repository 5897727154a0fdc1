"""
Idle session eviction for the HTTP transport.

The IdleReaper runs as a background asyncio task. Every interval it closes
sessions whose last activity is older than the idle timeout. Its loop
never dies on an error; failures are logged and the next tick runs.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from mcp_businessmap.logging import get_logger

if TYPE_CHECKING:
    from mcp_businessmap.transport.sessions import Clock, SessionManager

logger = get_logger(__name__)

STOP_TIMEOUT_SECONDS = 10.0


class IdleReaper:
    """
    Periodically evicts idle sessions.

    Example:
        >>> reaper = IdleReaper(manager, idle_timeout_seconds=1800, interval_seconds=60)
        >>> reaper.start()
        >>> ...
        >>> await reaper.stop()
    """

    def __init__(
        self,
        manager: SessionManager,
        idle_timeout_seconds: float,
        interval_seconds: float,
        clock: Clock | None = None,
    ) -> None:
        """
        Initialize the reaper.

        Args:
            manager: Session manager used to close expired sessions.
            idle_timeout_seconds: Sessions idle longer than this are evicted.
            interval_seconds: Time between sweeps.
            clock: Monotonic clock. Defaults to the manager's clock.
        """
        self.manager = manager
        self.idle_timeout_seconds = idle_timeout_seconds
        self.interval_seconds = interval_seconds
        self._clock = clock or manager.clock
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def is_running(self) -> bool:
        """Check if the sweep loop is running."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the sweep loop on the running event loop."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="idle-reaper")
        logger.info(
            "Idle reaper started",
            extra={
                "idle_timeout_seconds": self.idle_timeout_seconds,
                "interval_seconds": self.interval_seconds,
            },
        )

    async def stop(self) -> None:
        """Stop the sweep loop, cancelling it if it does not finish in time."""
        if self._task is None or self._stop_event is None:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=STOP_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning("Idle reaper did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Idle reaper stopped")

    async def sweep(self) -> list[str]:
        """
        Close every session idle longer than the timeout.

        Candidates are picked from a snapshot; each one is re-checked against
        the clock as it is removed, so a session touched mid-sweep survives.

        Returns:
            IDs of the sessions this sweep closed.
        """
        candidates = self.manager.expired(self._clock(), self.idle_timeout_seconds)
        evicted: list[str] = []

        for session_id in candidates:
            try:
                if await self.manager.close_if_idle(
                    session_id, self.idle_timeout_seconds, clock=self._clock
                ):
                    evicted.append(session_id)
            except Exception:
                logger.exception(
                    "Error evicting idle session", extra={"session_id": session_id}
                )

        if evicted:
            logger.info(
                "Evicted idle sessions",
                extra={"evicted_count": len(evicted), "active_sessions": len(self.manager)},
            )
        return evicted

    async def _run(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            # Wait for next sweep interval or stop signal
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.interval_seconds
                )
                break
            except TimeoutError:
                pass

            try:
                await self.sweep()
            except Exception:
                logger.exception("Error during idle sweep")
