"""
In-process session store.

A dict keyed by token, guarded by one asyncio lock.  Every operation
runs entirely under the lock, so each is atomic with respect to every
other request in the process.  Suitable for tests and single-process
development; production uses `SqlSessionStore`.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import replace
from datetime import datetime

from backoffice.core.errors import Expired, NotFound
from backoffice.rbac.permissions import Role
from backoffice.services.session_service import SessionContext, SessionRecord, SessionStore

logger = logging.getLogger("backoffice.sessions")


class MemorySessionStore(SessionStore):

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._sessions: dict[str, SessionRecord] = {}
        self._lock = asyncio.Lock()

    async def _create_locked(self, user_id: uuid.UUID, role: Role, now: datetime) -> SessionRecord:
        record = self._new_record(user_id, role, now)
        async with self._lock:
            owned = [s for s in self._sessions.values() if s.user_id == user_id]
            for stale in (s for s in owned if s.is_expired(now)):
                self._sessions.pop(stale.token, None)

            # dict order is insertion order, which breaks created_at ties
            live = sorted((s for s in owned if not s.is_expired(now)), key=lambda s: s.created_at)
            overflow = len(live) - (self.max_sessions_per_user - 1)
            for evicted in live[:max(overflow, 0)]:
                self._sessions.pop(evicted.token, None)
            if overflow > 0:
                logger.info(
                    "Evicted %d oldest session(s) of user %s (cap=%d)",
                    overflow,
                    user_id,
                    self.max_sessions_per_user,
                )

            self._sessions[record.token] = record
        return record

    async def _validate(self, token: str, now: datetime) -> SessionContext:
        async with self._lock:
            record = self._sessions.get(token)
            if record is None:
                raise NotFound()
            if record.is_expired(now):
                self._sessions.pop(token, None)
                logger.info("Session %s of user %s expired", record.id, record.user_id)
                raise Expired()
            self._sessions[token] = replace(record, last_accessed_at=now)
        return SessionContext(
            user_id=record.user_id,
            role=record.role,
            csrf_secret=record.csrf_secret,
            session_id=record.id,
        )

    async def _delete_token(self, token: str) -> None:
        async with self._lock:
            self._sessions.pop(token, None)

    async def sweep_expired(self) -> int:
        now = self.now()
        async with self._lock:
            stale = [t for t, s in self._sessions.items() if s.is_expired(now)]
            for token in stale:
                del self._sessions[token]
        return len(stale)

    async def invalidate_user(self, user_id: uuid.UUID) -> int:
        async with self._lock:
            owned = [t for t, s in self._sessions.items() if s.user_id == user_id]
            for token in owned:
                del self._sessions[token]
        logger.info("Revoked %d session(s) of user %s", len(owned), user_id)
        return len(owned)

    async def count_active(self, user_id: uuid.UUID) -> int:
        now = self.now()
        async with self._lock:
            return sum(1 for s in self._sessions.values() if s.user_id == user_id and not s.is_expired(now))

    def get_record(self, token: str) -> SessionRecord | None:
        """Direct read without touch or expiry handling, for inspection."""
        return self._sessions.get(token)
