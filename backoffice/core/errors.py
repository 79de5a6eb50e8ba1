"""
Gate error taxonomy.

Every failure the auth core can produce is one of these types.  The
`reason` attribute is the internal distinction (expired vs. unknown
token, which permission was missing, ...) and is only ever written to
the audit trail and server logs.  Clients see `public_message`, which
is identical for every member of a family so that responses cannot be
used to enumerate sessions or permissions.
"""

from __future__ import annotations


class GateError(Exception):
    """Base class for errors raised by the session / RBAC core."""

    status_code: int = 500
    public_message: str = "Internal server error"
    reason: str = "error"

    def __init__(self, reason: str | None = None) -> None:
        if reason is not None:
            self.reason = reason
        super().__init__(self.reason)


# ── Authentication (401) ─────────────────────────────────────────────
class AuthenticationError(GateError):
    status_code = 401
    public_message = "Authentication required"
    reason = "unauthenticated"


class InvalidCredentials(AuthenticationError):
    reason = "invalid_credentials"


class Malformed(AuthenticationError):
    reason = "malformed_token"


class NotFound(AuthenticationError):
    reason = "session_not_found"


class Expired(AuthenticationError):
    reason = "session_expired"


# ── Authorization (403) ──────────────────────────────────────────────
class AuthorizationError(GateError):
    status_code = 403
    public_message = "Not permitted"
    reason = "forbidden"


class Forbidden(AuthorizationError):
    """Permission denied.  `required` names the missing grant (internal)."""

    def __init__(self, required: str | None = None, reason: str | None = None) -> None:
        self.required = required
        super().__init__(reason or (f"requires {required}" if required else None))


class CSRFMismatch(AuthorizationError):
    reason = "csrf_mismatch"


# ── Storage (500, fail closed) ───────────────────────────────────────
class StorageError(GateError):
    status_code = 500
    public_message = "Internal server error"
    reason = "storage_unavailable"


__all__ = [
    "GateError",
    "AuthenticationError",
    "InvalidCredentials",
    "Malformed",
    "NotFound",
    "Expired",
    "AuthorizationError",
    "Forbidden",
    "CSRFMismatch",
    "StorageError",
]
