"""
RBAC dependencies — the FastAPI face of the request gate.

`require_permission` is a *dependency factory*: call it with a resource
and an action and it returns a FastAPI dependency that will:

1. Validate the session cookie (via the request gate).
2. Verify the CSRF token on mutating methods.
3. Ask the authorization engine about (role, resource, action).
4. Return 401 / 403 on failure, with NO details about which check
   failed or which permission was missing (prevents enumeration).

Usage in a route:
    @router.get("/materials", dependencies=[Depends(require_permission("material", "read"))])
    async def list_materials(...): ...

Or inject the session context:
    @router.put("/profiles/{user_id}")
    async def update_profile(
        user_id: uuid.UUID,
        ctx: SessionContext = Depends(require_permission("profile", "write", owner_param="user_id")),
    ): ...
"""

import uuid

from fastapi import Depends, Request

from backoffice.core.config import Settings
from backoffice.rbac.permissions import Action, Resource
from backoffice.services.audit_service import AuditSink
from backoffice.services.credential_service import UserDirectory
from backoffice.services.gate_service import RequestGate
from backoffice.services.session_service import SessionContext, SessionStore
from backoffice.services.sweeper import SessionSweeper


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_gate(request: Request) -> RequestGate:
    return request.app.state.gate


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_user_directory(request: Request) -> UserDirectory:
    return request.app.state.user_directory


def get_audit_sink(request: Request) -> AuditSink:
    return request.app.state.audit_sink


def get_sweeper(request: Request) -> SessionSweeper:
    return request.app.state.sweeper


class require_permission:
    """
    Dependency factory.

    `owner_param` names a path parameter holding the owning user's id;
    it sets the ownership flag for grants limited to own resources.
    """

    def __init__(self, resource: Resource | str, action: Action | str, owner_param: str | None = None):
        self.resource = resource
        self.action = action
        self.owner_param = owner_param

    def _owner_id(self, request: Request) -> uuid.UUID | None:
        if self.owner_param is None:
            return None
        raw = request.path_params.get(self.owner_param)
        try:
            return uuid.UUID(str(raw))
        except ValueError:
            return None

    async def __call__(
        self,
        request: Request,
        gate: RequestGate = Depends(get_gate),
    ) -> SessionContext:
        return await gate.authenticate_and_authorize(
            request,
            self.resource,
            self.action,
            owner_id=self._owner_id(request),
        )


async def get_current_session(
    request: Request,
    gate: RequestGate = Depends(get_gate),
) -> SessionContext:
    """Dependency for routes that only need authentication (and CSRF), not a permission."""
    return await gate.authenticate_session(request)
