"""
Session store — lifecycle of server-side sessions.

Handles:
- Creating sessions, with a per-user cap enforced by evicting the
  oldest sessions first
- Validating tokens (lazy expiry: an expired row is deleted by the
  validator that notices it)
- Invalidating one session (logout) or all of a user's sessions
  (force logout after a role change)
- Sweeping expired rows in one batch (active expiry)

Concurrency rules:
- Every mutation is a single conditional statement, or runs inside one
  transaction.  Deletes are delete-if-exists and never assert a row
  count, so two validators racing on the same expired token both see
  `Expired` and later ones see `NotFound`.
- count + evict + insert for one user is serialized with a striped
  lock and executed in one transaction.

`SessionStore` is the backend-neutral contract; `SqlSessionStore` is
the production backend.  See `memory_session_store` for the in-process
one.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import uuid
import zlib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from backoffice.core.database import BACKEND_ERRORS
from backoffice.core.errors import Expired, Forbidden, Malformed, NotFound, StorageError
from backoffice.core.security import (
    generate_csrf_secret,
    generate_session_id,
    generate_session_token,
    is_well_formed_token,
)
from backoffice.models.session import UserSession
from backoffice.rbac.permissions import Role, parse_role

logger = logging.getLogger("backoffice.sessions")

DEFAULT_SESSION_TTL = timedelta(hours=24)
DEFAULT_MAX_SESSIONS_PER_USER = 5
_LOCK_STRIPES = 64

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Backends without timezone support hand back naive UTC values."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class SessionRecord:
    id: str
    token: str
    user_id: uuid.UUID
    role: Role
    csrf_secret: str
    created_at: datetime
    expires_at: datetime
    last_accessed_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return as_utc(self.expires_at) <= now

    def __repr__(self) -> str:
        return f"SessionRecord(id={self.id!r}, user_id={self.user_id!r}, role={self.role.value!r})"


@dataclass(frozen=True)
class SessionContext:
    """What a validated request is allowed to know about its session."""

    user_id: uuid.UUID
    role: Role
    csrf_secret: str
    session_id: str

    def __repr__(self) -> str:
        return f"SessionContext(user_id={self.user_id!r}, role={self.role.value!r}, session_id={self.session_id!r})"


class UserLocks:
    """Fixed pool of asyncio locks; a user always maps to the same one."""

    def __init__(self, stripes: int = _LOCK_STRIPES) -> None:
        self._locks = [asyncio.Lock() for _ in range(stripes)]

    def for_user(self, user_id: uuid.UUID) -> asyncio.Lock:
        return self._locks[zlib.crc32(user_id.bytes) % len(self._locks)]


class SessionStore(abc.ABC):
    """Backend-neutral session store contract."""

    def __init__(
        self,
        ttl: timedelta = DEFAULT_SESSION_TTL,
        max_sessions_per_user: int = DEFAULT_MAX_SESSIONS_PER_USER,
        clock: Clock = utc_now,
    ) -> None:
        if ttl <= timedelta(0):
            raise ValueError("session TTL must be positive")
        if max_sessions_per_user < 1:
            raise ValueError("max_sessions_per_user must be at least 1")
        self.ttl = ttl
        self.max_sessions_per_user = max_sessions_per_user
        self._clock = clock
        self._user_locks = UserLocks()

    def now(self) -> datetime:
        return as_utc(self._clock())

    def _new_record(self, user_id: uuid.UUID, role: Role, now: datetime) -> SessionRecord:
        return SessionRecord(
            id=generate_session_id(),
            token=generate_session_token(),
            user_id=user_id,
            role=role,
            csrf_secret=generate_csrf_secret(),
            created_at=now,
            expires_at=now + self.ttl,
            last_accessed_at=now,
        )

    async def create(self, user_id: uuid.UUID, role: Role | str) -> SessionRecord:
        """Insert a new session, evicting the user's oldest ones past the cap."""
        role = parse_role(role)
        async with self._user_locks.for_user(user_id):
            record = await self._create_locked(user_id, role, self.now())
        logger.info("Session %s created for user %s (role=%s)", record.id, user_id, role.value)
        return record

    async def validate(self, token: str) -> SessionContext:
        """Resolve a token to its live session, or raise an AuthenticationError."""
        if not is_well_formed_token(token):
            raise Malformed()
        return await self._validate(token, self.now())

    async def invalidate(self, token: str) -> None:
        """Delete the session behind `token`; unknown tokens are not an error."""
        if not is_well_formed_token(token):
            return
        await self._delete_token(token)

    @abc.abstractmethod
    async def _create_locked(self, user_id: uuid.UUID, role: Role, now: datetime) -> SessionRecord:
        ...

    @abc.abstractmethod
    async def _validate(self, token: str, now: datetime) -> SessionContext:
        ...

    @abc.abstractmethod
    async def _delete_token(self, token: str) -> None:
        ...

    @abc.abstractmethod
    async def sweep_expired(self) -> int:
        """Delete every expired session; return how many were removed."""

    @abc.abstractmethod
    async def invalidate_user(self, user_id: uuid.UUID) -> int:
        """Delete every session of `user_id`; return how many were removed."""

    @abc.abstractmethod
    async def count_active(self, user_id: uuid.UUID) -> int:
        """Number of non-expired sessions held by `user_id`."""


def _record_from_row(row: UserSession) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        role=parse_role(row.role),
        csrf_secret=row.csrf_secret,
        created_at=as_utc(row.created_at),
        expires_at=as_utc(row.expires_at),
        last_accessed_at=as_utc(row.last_accessed_at),
    )


class SqlSessionStore(SessionStore):
    """Session store backed by the `sessions` table."""

    def __init__(self, session_factory: async_sessionmaker, **kwargs) -> None:
        super().__init__(**kwargs)
        self._session_factory = session_factory

    async def _create_locked(self, user_id: uuid.UUID, role: Role, now: datetime) -> SessionRecord:
        record = self._new_record(user_id, role, now)
        try:
            async with self._session_factory() as db, db.begin():
                # Expired rows never count toward the cap
                await db.execute(
                    delete(UserSession).where(
                        UserSession.user_id == user_id,
                        UserSession.expires_at <= now,
                    )
                )

                stmt = (
                    select(UserSession.id)
                    .where(UserSession.user_id == user_id)
                    .order_by(UserSession.created_at.asc(), UserSession.id.asc())
                )
                live_ids = list((await db.execute(stmt)).scalars().all())

                overflow = len(live_ids) - (self.max_sessions_per_user - 1)
                if overflow > 0:
                    evicted = live_ids[:overflow]
                    await db.execute(delete(UserSession).where(UserSession.id.in_(evicted)))
                    logger.info(
                        "Evicted %d oldest session(s) of user %s (cap=%d)",
                        len(evicted),
                        user_id,
                        self.max_sessions_per_user,
                    )

                db.add(
                    UserSession(
                        id=record.id,
                        token=record.token,
                        user_id=record.user_id,
                        role=record.role.value,
                        csrf_secret=record.csrf_secret,
                        created_at=record.created_at,
                        expires_at=record.expires_at,
                        last_accessed_at=record.last_accessed_at,
                    )
                )
        except BACKEND_ERRORS as exc:
            raise StorageError("session insert failed") from exc
        return record

    async def _validate(self, token: str, now: datetime) -> SessionContext:
        try:
            async with self._session_factory() as db, db.begin():
                row = (
                    await db.execute(select(UserSession).where(UserSession.token == token))
                ).scalar_one_or_none()
                if row is None:
                    raise NotFound()

                try:
                    record = _record_from_row(row)
                except Forbidden:
                    record = None

                if record is None:
                    # Unusable role snapshot: the session can never authorize anything
                    await db.execute(delete(UserSession).where(UserSession.token == token))
                    outcome = "corrupt"
                elif record.is_expired(now):
                    # delete-if-exists: a concurrent validator may already have removed it
                    await db.execute(
                        delete(UserSession).where(
                            UserSession.token == token,
                            UserSession.expires_at <= now,
                        )
                    )
                    outcome = "expired"
                else:
                    touched = await db.execute(
                        update(UserSession)
                        .where(UserSession.token == token, UserSession.expires_at > now)
                        .values(last_accessed_at=now)
                    )
                    if touched.rowcount == 0:
                        # Deleted between the read and the touch
                        raise NotFound()
                    outcome = "live"
        except BACKEND_ERRORS as exc:
            raise StorageError("session lookup failed") from exc

        if outcome == "corrupt":
            logger.error("Session %s of user %s has an unrecognised role; deleted", row.id, row.user_id)
            raise NotFound("corrupt_session")
        if outcome == "expired":
            logger.info("Session %s of user %s expired", record.id, record.user_id)
            raise Expired()
        return SessionContext(
            user_id=record.user_id,
            role=record.role,
            csrf_secret=record.csrf_secret,
            session_id=record.id,
        )

    async def _delete_token(self, token: str) -> None:
        try:
            async with self._session_factory() as db, db.begin():
                await db.execute(delete(UserSession).where(UserSession.token == token))
        except BACKEND_ERRORS as exc:
            raise StorageError("session delete failed") from exc

    async def sweep_expired(self) -> int:
        now = self.now()
        try:
            async with self._session_factory() as db, db.begin():
                result = await db.execute(delete(UserSession).where(UserSession.expires_at <= now))
        except BACKEND_ERRORS as exc:
            raise StorageError("session sweep failed") from exc
        return result.rowcount or 0

    async def invalidate_user(self, user_id: uuid.UUID) -> int:
        async with self._user_locks.for_user(user_id):
            try:
                async with self._session_factory() as db, db.begin():
                    result = await db.execute(delete(UserSession).where(UserSession.user_id == user_id))
            except BACKEND_ERRORS as exc:
                raise StorageError("session revoke failed") from exc
        count = result.rowcount or 0
        logger.info("Revoked %d session(s) of user %s", count, user_id)
        return count

    async def count_active(self, user_id: uuid.UUID) -> int:
        now = self.now()
        stmt = select(func.count()).select_from(UserSession).where(
            UserSession.user_id == user_id,
            UserSession.expires_at > now,
        )
        try:
            async with self._session_factory() as db:
                return (await db.execute(stmt)).scalar_one()
        except BACKEND_ERRORS as exc:
            raise StorageError("session count failed") from exc
