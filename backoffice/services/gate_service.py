"""
Request gate — per-request authentication, CSRF and authorization.

Every protected request passes through `authenticate_and_authorize`:

1. Extract the session token (cookie; `Authorization: Session <token>`
   or `X-Session-Token` as fallbacks) and validate it against the
   session store, with a bounded timeout.  A timeout or storage error
   denies the request.
2. On mutating methods, extract the CSRF token (header, or form field
   for form posts) and verify it.
3. Ask the authorization engine about the declared (resource, action).
4. Emit exactly one audit event describing the outcome.

Any failure raises a `GateError`; the route handler never runs.  The
internal reason travels only in the audit event and server logs.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from starlette.requests import Request

from backoffice.core.config import Settings
from backoffice.core.errors import Forbidden, GateError, NotFound, StorageError
from backoffice.rbac.permissions import Action, Resource, decide
from backoffice.services import csrf_service
from backoffice.services.audit_service import AuditEvent, AuditSink, emit
from backoffice.services.session_service import SessionContext, SessionStore

logger = logging.getLogger("backoffice.gate")

_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


class RequestGate:

    def __init__(
        self,
        store: SessionStore,
        audit_sink: AuditSink,
        *,
        cookie_name: str = "session_token",
        csrf_header: str = "X-CSRF-Token",
        csrf_form_field: str = "csrf_token",
        lookup_timeout: float = 2.0,
    ) -> None:
        self.store = store
        self.audit_sink = audit_sink
        self.cookie_name = cookie_name
        self.csrf_header = csrf_header
        self.csrf_form_field = csrf_form_field
        self.lookup_timeout = lookup_timeout

    @classmethod
    def from_settings(cls, store: SessionStore, audit_sink: AuditSink, settings: Settings) -> "RequestGate":
        return cls(
            store,
            audit_sink,
            cookie_name=settings.SESSION_COOKIE_NAME,
            csrf_header=settings.CSRF_HEADER_NAME,
            csrf_form_field=settings.CSRF_FORM_FIELD,
            lookup_timeout=settings.SESSION_LOOKUP_TIMEOUT_SECONDS,
        )

    # ── Extraction ───────────────────────────────────────────────────

    def extract_session_token(self, request: Request) -> str | None:
        token = request.cookies.get(self.cookie_name)
        if token:
            return token

        scheme, _, credentials = request.headers.get("authorization", "").partition(" ")
        if scheme.lower() == "session" and credentials.strip():
            return credentials.strip()

        return request.headers.get("x-session-token") or None

    async def extract_csrf_token(self, request: Request) -> str | None:
        supplied = request.headers.get(self.csrf_header)
        if supplied:
            return supplied
        content_type = request.headers.get("content-type", "")
        if content_type.startswith(_FORM_CONTENT_TYPES):
            form = await request.form()
            value = form.get(self.csrf_form_field)
            return value if isinstance(value, str) else None
        return None

    # ── Steps ────────────────────────────────────────────────────────

    async def validate_token(self, token: str | None) -> SessionContext:
        """Session store lookup, bounded and fail-closed."""
        if not token:
            raise NotFound("missing_token")
        try:
            return await asyncio.wait_for(self.store.validate(token), timeout=self.lookup_timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Session lookup timed out after %ss", self.lookup_timeout)
            raise StorageError("session_lookup_timeout") from exc
        except StorageError:
            logger.error("Session lookup failed", exc_info=True)
            raise
        except GateError:
            raise
        except Exception as exc:
            # A backend that is not wrapped still has to fail closed
            logger.exception("Session lookup raised %s", type(exc).__name__)
            raise StorageError("session_lookup_failed") from exc

    async def authenticate(
        self,
        request: Request,
        resource: Resource | str = "session",
        action: Action | str | None = None,
    ) -> SessionContext:
        """Session validation plus CSRF on mutating methods; failures are audited."""
        action = action or request.method.lower()
        try:
            context = await self.validate_token(self.extract_session_token(request))
        except GateError as exc:
            self._audit(None, action, resource, "denied", exc.reason)
            raise

        if csrf_service.requires_csrf(request.method):
            try:
                csrf_service.verify(context, await self.extract_csrf_token(request))
            except GateError as exc:
                logger.warning("CSRF check failed for user %s", context.user_id)
                self._audit(context.user_id, action, resource, "denied", exc.reason)
                raise
        return context

    async def authenticate_session(
        self,
        request: Request,
        resource: Resource | str = "session",
        action: Action | str | None = None,
    ) -> SessionContext:
        """Gate for routes that need a session but no permission; audited like the full gate."""
        context = await self.authenticate(request, resource, action)
        self._audit(context.user_id, action or request.method.lower(), resource, "allowed", None)
        return context

    def authorize(
        self,
        context: SessionContext,
        resource: Resource | str,
        action: Action | str,
        is_owner: bool = False,
    ) -> None:
        """Engine decision for an already-authenticated context, audited."""
        decision = decide(context.role, resource, action, is_owner)
        if not decision.allowed:
            logger.warning(
                "Permission denied for user %s: %s",
                context.user_id,
                decision.reason,
            )
            self._audit(context.user_id, action, resource, "denied", decision.reason)
            required = decision.required_role.value if decision.required_role else None
            raise Forbidden(required=required, reason=decision.reason)
        self._audit(context.user_id, action, resource, "allowed", None)

    async def authenticate_and_authorize(
        self,
        request: Request,
        resource: Resource | str,
        action: Action | str,
        is_owner: bool = False,
        owner_id: uuid.UUID | None = None,
    ) -> SessionContext:
        """
        Full gate.  `owner_id`, when given, is the owning user of the
        target resource and decides the ownership flag.
        """
        context = await self.authenticate(request, resource, action)
        if owner_id is not None:
            is_owner = owner_id == context.user_id
        self.authorize(context, resource, action, is_owner)
        return context

    # ── Audit ────────────────────────────────────────────────────────

    def _audit(self, actor, action, resource, decision: str, reason: str | None) -> None:
        emit(
            self.audit_sink,
            AuditEvent(
                actor=actor,
                action=getattr(action, "value", str(action)),
                resource=getattr(resource, "value", str(resource)),
                decision=decision,
                reason=reason,
            ),
        )
