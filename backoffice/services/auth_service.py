"""
Authentication service.

Handles:
- Login: verify credentials, open a session (the store enforces the
  per-user cap), derive the session's CSRF token
- Logout: delete the current session
- Force logout: delete every session of a user, so that a role change
  takes effect immediately instead of at the next login

Every outcome is written to the audit sink.  Controllers call these
functions and turn the result into HTTP.
"""

import logging
import uuid
from dataclasses import dataclass

from backoffice.core.errors import InvalidCredentials
from backoffice.rbac.permissions import Role
from backoffice.services import csrf_service
from backoffice.services.audit_service import AuditEvent, AuditSink, emit
from backoffice.services.credential_service import UserDirectory, verify_credentials
from backoffice.services.session_service import SessionContext, SessionStore

logger = logging.getLogger("backoffice.auth")


@dataclass(frozen=True)
class LoginResult:
    user_id: uuid.UUID
    role: Role
    session_token: str
    csrf_token: str

    def __repr__(self) -> str:
        return f"LoginResult(user_id={self.user_id!r}, role={self.role.value!r})"


async def login(
    email: str,
    password: str,
    *,
    directory: UserDirectory,
    store: SessionStore,
    audit_sink: AuditSink,
) -> LoginResult:
    """Validate credentials and open a new session."""
    try:
        user = await verify_credentials(directory, email, password)
    except InvalidCredentials as exc:
        emit(audit_sink, AuditEvent(actor=None, action="login", resource="session",
                                    decision="denied", reason=exc.reason))
        raise

    record = await store.create(user.id, user.role)
    emit(audit_sink, AuditEvent(actor=user.id, action="login", resource="session", decision="allowed"))

    return LoginResult(
        user_id=user.id,
        role=record.role,
        session_token=record.token,
        csrf_token=csrf_service.issue(record),
    )


async def logout(
    token: str,
    context: SessionContext,
    *,
    store: SessionStore,
    audit_sink: AuditSink,
) -> None:
    """Delete the caller's session (idempotent)."""
    await store.invalidate(token)
    logger.info("Session %s of user %s logged out", context.session_id, context.user_id)
    emit(audit_sink, AuditEvent(actor=context.user_id, action="logout", resource="session", decision="allowed"))


async def revoke_user_sessions(
    target_user_id: uuid.UUID,
    context: SessionContext,
    *,
    store: SessionStore,
    audit_sink: AuditSink,
) -> int:
    """Admin action: force-logout every session of `target_user_id`."""
    count = await store.invalidate_user(target_user_id)
    emit(
        audit_sink,
        AuditEvent(
            actor=context.user_id,
            action="sessions_revoked",
            resource="user",
            decision="allowed",
            reason=f"target={target_user_id} count={count}",
        ),
    )
    return count
