"""
Auth controller — login, logout & current session.

Login is PUBLIC (no session dependency).  Logout requires a valid
session and, being a state change, the CSRF token.
"""

from fastapi import APIRouter, Depends, Request, Response

from backoffice.core.config import Settings
from backoffice.rbac.dependencies import (
    get_audit_sink,
    get_current_session,
    get_gate,
    get_session_store,
    get_settings,
    get_user_directory,
)
from backoffice.schemas import LoginRequest, LoginResponse, MessageResponse, SessionOut
from backoffice.services import auth_service, csrf_service
from backoffice.services.audit_service import AuditSink
from backoffice.services.credential_service import UserDirectory
from backoffice.services.gate_service import RequestGate
from backoffice.services.session_service import SessionContext, SessionStore

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    response: Response,
    settings: Settings = Depends(get_settings),
    directory: UserDirectory = Depends(get_user_directory),
    store: SessionStore = Depends(get_session_store),
    audit_sink: AuditSink = Depends(get_audit_sink),
):
    """Authenticate with email + password → session cookie + CSRF token."""
    result = await auth_service.login(
        body.email,
        body.password,
        directory=directory,
        store=store,
        audit_sink=audit_sink,
    )
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=result.session_token,
        max_age=settings.SESSION_TTL_SECONDS,
        path="/",
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="strict",
    )
    return LoginResponse(user_id=result.user_id, role=result.role.value, csrf_token=result.csrf_token)


@router.delete("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    context: SessionContext = Depends(get_current_session),
    gate: RequestGate = Depends(get_gate),
    settings: Settings = Depends(get_settings),
):
    """Delete the current session server-side and clear the cookie."""
    await auth_service.logout(
        gate.extract_session_token(request),
        context,
        store=gate.store,
        audit_sink=gate.audit_sink,
    )
    response.delete_cookie(
        key=settings.SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="strict",
    )
    return MessageResponse(detail="Logged out successfully")


@router.get("/me", response_model=SessionOut)
async def me(context: SessionContext = Depends(get_current_session)):
    """Return the current session (and its static CSRF token, for clients that lost it)."""
    return SessionOut(
        user_id=context.user_id,
        role=context.role.value,
        session_id=context.session_id,
        csrf_token=csrf_service.issue(context),
    )
