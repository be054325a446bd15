"""
Server-side sessions.

The browser only holds an opaque, random session id (HttpOnly cookie); the
claim bag lives in the ``sessions`` table.  ``SessionMiddleware`` loads the
bag before the route runs and persists it before the response is sent, so a
client never observes a fresh id paired with stale or partial claims.

Routes mutate ``request.state.session``:

    session.cycle_id()              # new id, old record dropped on save
    session.insert("user.id", ...)  # claims written after the rotation
    session.clear()                 # logout
"""

from __future__ import annotations

import json
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Request
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from app.core.config import settings
from app.models.session import SessionRecord

logger = logging.getLogger(__name__)

_ID_BYTES = 32


def new_session_id() -> str:
    return secrets.token_urlsafe(_ID_BYTES)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Session:
    """Request-scoped view of one session's claims."""

    def __init__(self, session_id: str | None = None, data: dict[str, Any] | None = None) -> None:
        self.original_id = session_id
        self._id = session_id
        self._data: dict[str, Any] = dict(data or {})
        self.modified = False

    @property
    def id(self) -> str | None:
        return self._id

    @property
    def cycled(self) -> bool:
        return self._id != self.original_id and self.original_id is not None

    @property
    def is_empty(self) -> bool:
        return not self._data

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def insert(self, key: str, value: Any) -> None:
        # JSON round-trip now, so an unserialisable claim fails in the route.
        self._data[key] = json.loads(json.dumps(value))
        self.modified = True

    def remove(self, key: str) -> Any:
        self.modified = True
        return self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()
        self.modified = True

    def cycle_id(self) -> None:
        """Assign a fresh id; the old one stops resolving once the session is saved."""
        self._id = new_session_id()
        self.modified = True

    def items(self) -> dict[str, Any]:
        return dict(self._data)


class SessionStore:
    """Persists claim bags in the ``sessions`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl_seconds: int = settings.SESSION_TTL_SECONDS,
    ) -> None:
        self._session_factory = session_factory
        self.ttl = timedelta(seconds=ttl_seconds)

    async def load(self, session_id: str) -> dict[str, Any] | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(SessionRecord).where(
                    SessionRecord.id == session_id,
                    SessionRecord.expires_at > _utcnow(),
                )
            )
            record = result.scalar_one_or_none()
        if record is None:
            return None
        try:
            data = json.loads(record.data)
        except json.JSONDecodeError:
            logger.warning("Discarding session with corrupt payload")
            return None
        return data if isinstance(data, dict) else None

    async def save(self, session_id: str, data: dict[str, Any]) -> None:
        async with self._session_factory() as db:
            record = await db.get(SessionRecord, session_id)
            if record is None:
                record = SessionRecord(id=session_id)
                db.add(record)
            record.data = json.dumps(data)
            record.expires_at = _utcnow() + self.ttl
            await db.commit()

    async def delete(self, session_id: str) -> None:
        async with self._session_factory() as db:
            await db.execute(delete(SessionRecord).where(SessionRecord.id == session_id))
            await db.commit()

    async def purge_expired(self) -> int:
        async with self._session_factory() as db:
            result = await db.execute(delete(SessionRecord).where(SessionRecord.expires_at <= _utcnow()))
            await db.commit()
        return result.rowcount or 0


class SessionMiddleware(BaseHTTPMiddleware):
    """Loads the session before the route and finalises it afterwards."""

    def __init__(
        self,
        app: ASGIApp,
        store: SessionStore,
        cookie_name: str = settings.SESSION_COOKIE_NAME,
        secure: bool = settings.COOKIE_SECURE,
    ) -> None:
        super().__init__(app)
        self.store = store
        self.cookie_name = cookie_name
        self.secure = secure

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        session_id = request.cookies.get(self.cookie_name)
        data = await self.store.load(session_id) if session_id else None
        # An unknown or expired id is never adopted: it stays "original" only to be dropped.
        session = Session(session_id if data is not None else None, data)
        stale_cookie = session_id is not None and data is None
        request.state.session = session

        response = await call_next(request)

        await self._finalize(session, response, stale_cookie)
        return response

    async def _finalize(self, session: Session, response: Response, stale_cookie: bool) -> None:
        if session.is_empty:
            if session.original_id is not None:
                await self.store.delete(session.original_id)
            if session.original_id is not None or stale_cookie:
                response.delete_cookie(self.cookie_name, path="/")
            return

        if not session.modified:
            return

        if session.id is None:
            session.cycle_id()
        if session.cycled:
            await self.store.delete(session.original_id)  # type: ignore[arg-type]
        await self.store.save(session.id, session.items())  # type: ignore[arg-type]
        response.set_cookie(
            key=self.cookie_name,
            value=session.id,  # type: ignore[arg-type]
            max_age=int(self.store.ttl.total_seconds()),
            path="/",
            httponly=True,
            secure=self.secure,
            samesite="lax",
        )


def get_session(request: Request) -> Session:
    """FastAPI dependency — the session attached by ``SessionMiddleware``."""
    session = getattr(request.state, "session", None)
    if session is None:
        raise RuntimeError("SessionMiddleware is not installed")
    return session
