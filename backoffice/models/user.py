from __future__ import annotations

"""
User model.

The users table is owned by the user-management screens; the auth core
only reads it (through the user directory) to verify credentials and
to snapshot a role into new sessions.
"""

from sqlalchemy import CheckConstraint, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (
        CheckConstraint("role IN ('admin', 'trainer', 'instructor')", name="ck_users_role"),
    )

    def __repr__(self) -> str:
        return f"<User {self.email} role={self.role}>"


# Login matches e-mails case-insensitively, so uniqueness must too.
Index("uq_users_email_lower", func.lower(User.email), unique=True)
