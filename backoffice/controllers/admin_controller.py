"""
Admin controller — session administration.

Every route uses `Depends(require_permission(...))` for enforcement.
Handlers only translate between HTTP and the session store / auth service.

Revoking a user's sessions is how an admin makes a role change take
effect immediately: sessions snapshot the role at login, so the user
must log in again to pick up the new one.
"""

import uuid

from fastapi import APIRouter, Depends

from backoffice.rbac.dependencies import (
    get_audit_sink,
    get_session_store,
    get_sweeper,
    require_permission,
)
from backoffice.rbac.permissions import Action, Resource
from backoffice.schemas import RevokeSessionsOut, SessionCountOut, SweepOut
from backoffice.services import auth_service
from backoffice.services.audit_service import AuditSink
from backoffice.services.session_service import SessionContext, SessionStore
from backoffice.services.sweeper import SessionSweeper

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@router.get("/users/{user_id}/sessions", response_model=SessionCountOut)
async def count_user_sessions(
    user_id: uuid.UUID,
    context: SessionContext = Depends(require_permission(Resource.USER, Action.READ)),
    store: SessionStore = Depends(get_session_store),
):
    return SessionCountOut(user_id=user_id, active_sessions=await store.count_active(user_id))


@router.delete("/users/{user_id}/sessions", response_model=RevokeSessionsOut)
async def revoke_user_sessions(
    user_id: uuid.UUID,
    context: SessionContext = Depends(require_permission(Resource.USER, Action.WRITE)),
    store: SessionStore = Depends(get_session_store),
    audit_sink: AuditSink = Depends(get_audit_sink),
):
    """Force logout: delete every session of the user."""
    revoked = await auth_service.revoke_user_sessions(user_id, context, store=store, audit_sink=audit_sink)
    return RevokeSessionsOut(user_id=user_id, revoked=revoked)


@router.post("/sessions/sweep", response_model=SweepOut)
async def sweep_sessions(
    context: SessionContext = Depends(require_permission(Resource.USER, Action.WRITE)),
    sweeper: SessionSweeper = Depends(get_sweeper),
):
    """Run one expired-session sweep now instead of waiting for the interval."""
    removed = await sweeper.run_once()
    return SweepOut(removed=removed)
