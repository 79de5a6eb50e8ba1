"""
Password hashing & session secret helpers.

- Passwords are hashed with bcrypt directly (passlib is unmaintained
  and broken with bcrypt>=4.1).
- Session tokens, session ids and CSRF secrets come from `secrets`
  and are independent of each other and of any user data.
- Every comparison of secret material is constant-time.
"""

import hmac
import re
import secrets

import bcrypt

# Upper bound accepted on the wire; real tokens are 43 chars.
MAX_SESSION_TOKEN_LENGTH = 255
_TOKEN_ALPHABET = re.compile(r"^[A-Za-z0-9_-]+$")

# Checked against when the identifier is unknown so that both failure
# paths pay for one bcrypt round.
_DUMMY_PASSWORD_HASH = bcrypt.hashpw(b"dummy-password", bcrypt.gensalt()).decode("utf-8")


# ── Password hashing ────────────────────────────────────────────────


def hash_password(plain: str) -> str:
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def burn_password_check(plain: str) -> None:
    """Spend the same time as a real check when there is nothing to check."""
    verify_password(plain, _DUMMY_PASSWORD_HASH)


# ── Session secrets ─────────────────────────────────────────────────


def generate_session_id() -> str:
    """128-bit internal identifier."""
    return secrets.token_hex(16)


def generate_session_token() -> str:
    """256-bit URL-safe token handed to the client."""
    return secrets.token_urlsafe(32)


def generate_csrf_secret() -> str:
    return secrets.token_hex(32)


def is_well_formed_token(token: str | None) -> bool:
    """Cheap shape check run before any storage lookup."""
    if not token or len(token) > MAX_SESSION_TOKEN_LENGTH:
        return False
    return _TOKEN_ALPHABET.match(token) is not None


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
