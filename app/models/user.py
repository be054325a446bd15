"""
User model — credentials, account lifecycle flags & role-based access control.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Enum, String, Text, Uuid, false, true

from app.db.base import Base


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    EDITOR = "editor"
    AUTHOR = "author"
    CONTRIBUTOR = "contributor"
    SUBSCRIBER = "subscriber"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: uuid.UUID = Column(Uuid, primary_key=True, default=uuid.uuid4)  # type: ignore[assignment]
    username: str = Column(String(50), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    email: str = Column(String(255), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    password_hash: str = Column(String(255), nullable=False)  # type: ignore[assignment]

    display_name: str | None = Column(String(100), nullable=True)  # type: ignore[assignment]
    bio: str | None = Column(Text, nullable=True)  # type: ignore[assignment]
    avatar_url: str | None = Column(String(500), nullable=True)  # type: ignore[assignment]
    social_twitter: str | None = Column(String(100), nullable=True)  # type: ignore[assignment]
    social_github: str | None = Column(String(100), nullable=True)  # type: ignore[assignment]
    website_url: str | None = Column(String(500), nullable=True)  # type: ignore[assignment]

    role: UserRole = Column(  # type: ignore[assignment]
        Enum(UserRole, name="user_role", values_callable=lambda roles: [r.value for r in roles]),
        nullable=False,
        default=UserRole.SUBSCRIBER,
        server_default=UserRole.SUBSCRIBER.value,
    )
    is_active: bool = Column(Boolean, nullable=False, default=True, server_default=true())  # type: ignore[assignment]
    email_verified: bool = Column(Boolean, nullable=False, default=False, server_default=false())  # type: ignore[assignment]

    # Token and expiry are written and cleared together.
    email_verification_token: str | None = Column(String(128), nullable=True, index=True)  # type: ignore[assignment]
    email_verification_expires_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    password_reset_token: str | None = Column(String(128), nullable=True, index=True)  # type: ignore[assignment]
    password_reset_expires_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]

    created_at: datetime = Column(DateTime(timezone=True), nullable=False, default=_utcnow)  # type: ignore[assignment]
    updated_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<User {self.username} ({self.role.value})>"
