"""
CSRF guard.

Tokens are HMAC-SHA256(csrf_secret, session_id): deterministic, so they
can be re-derived for verification without a separate store, and
static for the session lifetime.  A client receives a new token only
when it obtains a new session.
"""

import hashlib
import hmac

from backoffice.core.errors import CSRFMismatch
from backoffice.core.security import constant_time_equals

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def _session_id(session) -> str:
    # SessionContext carries `session_id`, SessionRecord carries `id`
    return getattr(session, "session_id", None) or session.id


def issue(session) -> str:
    """Derive the CSRF token for `session`."""
    return hmac.new(
        session.csrf_secret.encode("utf-8"),
        _session_id(session).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify(session, supplied: str | None) -> None:
    """Raise CSRFMismatch unless `supplied` is the token for `session`."""
    if not supplied:
        raise CSRFMismatch("csrf_missing")
    if not constant_time_equals(issue(session), supplied):
        raise CSRFMismatch()


def requires_csrf(method: str) -> bool:
    return method.upper() not in SAFE_METHODS
