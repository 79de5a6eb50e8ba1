"""
Credential verification & user directory.

The user directory is the auth core's read-only window onto the users
table (which the user-management screens own).  `verify_credentials`
checks an identifier / secret pair against it.

Both "no such user" and "wrong password" raise the same
`InvalidCredentials` after one bcrypt round each, so neither the
message nor the latency tells a caller which one happened.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from backoffice.core.database import BACKEND_ERRORS
from backoffice.core.errors import Forbidden, InvalidCredentials, StorageError
from backoffice.core.security import burn_password_check, verify_password
from backoffice.models.user import User
from backoffice.rbac.permissions import Role, parse_role

logger = logging.getLogger("backoffice.credentials")


@dataclass(frozen=True)
class UserRecord:
    id: uuid.UUID
    email: str
    role: str
    password_hash: str

    def __repr__(self) -> str:
        return f"UserRecord(id={self.id!r}, email={self.email!r}, role={self.role!r})"


@dataclass(frozen=True)
class VerifiedUser:
    id: uuid.UUID
    email: str
    role: Role


class UserDirectory(Protocol):
    async def find_user_by_identifier(self, identifier: str) -> UserRecord | None: ...


class SqlUserDirectory:
    """Looks users up by e-mail, case-insensitively."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    async def find_user_by_identifier(self, identifier: str) -> UserRecord | None:
        stmt = select(User).where(func.lower(User.email) == identifier.lower())
        try:
            async with self._session_factory() as db:
                user = (await db.execute(stmt)).scalar_one_or_none()
        except BACKEND_ERRORS as exc:
            raise StorageError("user lookup failed") from exc
        if user is None:
            return None
        return UserRecord(id=user.id, email=user.email, role=user.role, password_hash=user.password_hash)


async def verify_credentials(
    directory: UserDirectory,
    identifier: str,
    secret: str,
) -> VerifiedUser:
    """Return the verified user or raise InvalidCredentials."""
    identifier = (identifier or "").strip()
    if not identifier or not secret:
        raise InvalidCredentials()

    user = await directory.find_user_by_identifier(identifier)
    if user is None:
        burn_password_check(secret)
        raise InvalidCredentials()

    if not verify_password(secret, user.password_hash):
        raise InvalidCredentials()

    try:
        role = parse_role(user.role)
    except Forbidden:
        logger.error("User %s has an unrecognised role; refusing login", user.id)
        raise InvalidCredentials()

    return VerifiedUser(id=user.id, email=user.email, role=role)
