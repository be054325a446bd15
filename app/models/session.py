"""
Server-side session records — the cookie only carries the opaque id.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, String, Text

from app.db.base import Base


class SessionRecord(Base):
    __tablename__ = "sessions"

    id: str = Column(String(64), primary_key=True)  # type: ignore[assignment]
    data: str = Column(Text, nullable=False, default="{}")  # type: ignore[assignment]  # JSON claim bag
    expires_at: datetime = Column(DateTime(timezone=True), nullable=False, index=True)  # type: ignore[assignment]
