"""
User session model — server-side session registry.

One row per login.  The row is the only shared mutable state in the
auth core: it is inserted on login, touched on every validated request
and hard-deleted on logout, expiry, sweep or eviction.
"""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.models.base import Base


class UserSession(Base):
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    token: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    csrf_secret: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime]
    expires_at: Mapped[datetime] = mapped_column(index=True)
    last_accessed_at: Mapped[datetime]

    __table_args__ = (
        CheckConstraint("expires_at > created_at", name="ck_sessions_expiry_after_creation"),
    )

    def __repr__(self) -> str:
        # Never include the token
        return f"<UserSession id={self.id} user={self.user_id} role={self.role}>"
