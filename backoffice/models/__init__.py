"""Every table the auth core touches; Alembic reads `Base.metadata` from here."""

from backoffice.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from backoffice.models.session import UserSession
from backoffice.models.user import User

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "User",
    "UserSession",
]
