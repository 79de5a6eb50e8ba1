"""
Background sweep of expired sessions.

Lazy expiry in `validate` only cleans up tokens that are presented
again; the sweeper bounds storage growth for abandoned ones.  It runs
as an asyncio task for the whole server lifetime (started and
cancelled in the app lifespan).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from backoffice.services.session_service import SessionStore

logger = logging.getLogger("backoffice.sweeper")


class SessionSweeper:

    def __init__(self, store: SessionStore, interval_seconds: float) -> None:
        self.store = store
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    async def run_once(self) -> int:
        removed = await self.store.sweep_expired()
        if removed:
            logger.info("Swept %d expired session(s)", removed)
        else:
            logger.debug("Session sweep found nothing to remove")
        return removed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Session sweep failed; retrying next interval")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="session-sweeper")
            logger.info("Session sweeper started (interval=%ss)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Session sweeper stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
