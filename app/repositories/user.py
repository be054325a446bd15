"""
User persistence.

``UserRepository`` is the abstraction the service layer depends on;
``SqlAlchemyUserRepository`` is the production implementation.

Every operation opens its own ``AsyncSession`` and is one atomic unit.
Token consumption is a single conditional ``UPDATE … RETURNING`` (match
token, not expired, clear the pair, apply the side effect) so two concurrent
callers can never both consume the same token.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Mapping
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import EmailExists, StorageError, UserNotFound, UsernameExists
from app.core.security import PasswordHasher
from app.models.user import User, UserRole
from app.schemas.user import CreateUserRequest

logger = logging.getLogger(__name__)

PROFILE_FIELDS = frozenset(
    {"display_name", "bio", "avatar_url", "social_twitter", "social_github", "website_url"}
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRepository(ABC):
    """Persistence contract for the User entity."""

    @abstractmethod
    async def create(self, request: CreateUserRequest) -> User: ...

    @abstractmethod
    async def find_by_id(self, user_id: uuid.UUID) -> User | None: ...

    @abstractmethod
    async def find_by_username(self, username: str) -> User | None: ...

    @abstractmethod
    async def find_by_email(self, email: str) -> User | None: ...

    @abstractmethod
    async def find_by_username_or_email(self, username_or_email: str) -> User | None: ...

    @abstractmethod
    async def update(self, user_id: uuid.UUID, fields: Mapping[str, Any]) -> User: ...

    @abstractmethod
    async def verify_password(self, user: User, password: str) -> bool: ...

    @abstractmethod
    async def change_password(self, user_id: uuid.UUID, new_password: str) -> None: ...

    @abstractmethod
    async def set_email_verification_token(self, user_id: uuid.UUID, token: str, expires_at: datetime) -> None: ...

    @abstractmethod
    async def verify_email(self, token: str) -> User | None: ...

    @abstractmethod
    async def set_password_reset_token(self, user_id: uuid.UUID, token: str, expires_at: datetime) -> None: ...

    @abstractmethod
    async def reset_password(self, token: str, new_password: str) -> User | None: ...

    @abstractmethod
    async def set_access(
        self, user_id: uuid.UUID, *, role: UserRole | None = None, is_active: bool | None = None
    ) -> User:
        """Apply role and/or activation changes in one atomic write."""

    async def set_active(self, user_id: uuid.UUID, is_active: bool) -> User:
        return await self.set_access(user_id, is_active=is_active)

    async def set_role(self, user_id: uuid.UUID, role: UserRole) -> User:
        return await self.set_access(user_id, role=role)


class SqlAlchemyUserRepository(UserRepository):
    """Async SQLAlchemy implementation (PostgreSQL in production, SQLite in tests)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], hasher: PasswordHasher) -> None:
        self._session_factory = session_factory
        self._hasher = hasher

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as db:
            try:
                yield db
            except SQLAlchemyError as exc:
                await db.rollback()
                logger.error("User repository failure: %s", exc)
                raise StorageError(str(exc)) from exc

    # ── Creation ────────────────────────────────────────────────────
    async def create(self, request: CreateUserRequest) -> User:
        if await self.find_by_username(request.username) is not None:
            raise UsernameExists()
        if await self.find_by_email(request.email) is not None:
            raise EmailExists()

        password_hash = await self._hasher.hash_async(request.password)
        now = _utcnow()
        user = User(
            id=uuid.uuid4(),
            username=request.username,
            email=request.email.lower(),
            password_hash=password_hash,
            display_name=request.display_name,
            role=UserRole.SUBSCRIBER,
            is_active=True,
            email_verified=False,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._session() as db:
                db.add(user)
                await db.commit()
        except StorageError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                # Lost a race against a concurrent registration.
                raise await self._classify_conflict(request) from exc.__cause__
            raise
        return user

    async def _classify_conflict(self, request: CreateUserRequest) -> Exception:
        if await self.find_by_username(request.username) is not None:
            return UsernameExists()
        if await self.find_by_email(request.email) is not None:
            return EmailExists()
        return StorageError("Integrity violation on user insert")

    # ── Lookups ─────────────────────────────────────────────────────
    async def _find_one(self, *criteria: Any) -> User | None:
        async with self._session() as db:
            result = await db.execute(select(User).where(*criteria))
            return result.scalars().first()

    async def find_by_id(self, user_id: uuid.UUID) -> User | None:
        return await self._find_one(User.id == user_id)

    async def find_by_username(self, username: str) -> User | None:
        return await self._find_one(User.username == username)

    async def find_by_email(self, email: str) -> User | None:
        return await self._find_one(User.email == email.strip().lower())

    async def find_by_username_or_email(self, username_or_email: str) -> User | None:
        ident = username_or_email.strip()
        return await self._find_one(or_(User.username == ident, User.email == ident.lower()))

    # ── Mutations ───────────────────────────────────────────────────
    async def _update_returning(self, *criteria: Any, values: Mapping[str, Any]) -> User | None:
        stmt = (
            update(User)
            .where(*criteria)
            .values(**values, updated_at=_utcnow())
            .returning(User)
            .execution_options(synchronize_session=False)
        )
        async with self._session() as db:
            result = await db.execute(stmt)
            user = result.scalars().first()
            await db.commit()
            return user

    async def update(self, user_id: uuid.UUID, fields: Mapping[str, Any]) -> User:
        unknown = set(fields) - PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Not updatable profile fields: {sorted(unknown)!r}")
        if not fields:
            user = await self.find_by_id(user_id)
        else:
            user = await self._update_returning(User.id == user_id, values=fields)
        if user is None:
            raise UserNotFound()
        return user

    async def verify_password(self, user: User, password: str) -> bool:
        return await self._hasher.verify_async(password, user.password_hash)

    async def change_password(self, user_id: uuid.UUID, new_password: str) -> None:
        password_hash = await self._hasher.hash_async(new_password)
        user = await self._update_returning(User.id == user_id, values={"password_hash": password_hash})
        if user is None:
            raise UserNotFound()

    async def set_email_verification_token(self, user_id: uuid.UUID, token: str, expires_at: datetime) -> None:
        user = await self._update_returning(
            User.id == user_id,
            values={"email_verification_token": token, "email_verification_expires_at": expires_at},
        )
        if user is None:
            raise UserNotFound()

    async def verify_email(self, token: str) -> User | None:
        return await self._update_returning(
            User.email_verification_token == token,
            User.email_verification_expires_at > _utcnow(),
            values={
                "email_verified": True,
                "email_verification_token": None,
                "email_verification_expires_at": None,
            },
        )

    async def set_password_reset_token(self, user_id: uuid.UUID, token: str, expires_at: datetime) -> None:
        user = await self._update_returning(
            User.id == user_id,
            values={"password_reset_token": token, "password_reset_expires_at": expires_at},
        )
        if user is None:
            raise UserNotFound()

    async def reset_password(self, token: str, new_password: str) -> User | None:
        password_hash = await self._hasher.hash_async(new_password)
        return await self._update_returning(
            User.password_reset_token == token,
            User.password_reset_expires_at > _utcnow(),
            values={
                "password_hash": password_hash,
                "password_reset_token": None,
                "password_reset_expires_at": None,
            },
        )

    async def set_access(
        self, user_id: uuid.UUID, *, role: UserRole | None = None, is_active: bool | None = None
    ) -> User:
        values: dict[str, Any] = {}
        if role is not None:
            values["role"] = role
        if is_active is not None:
            values["is_active"] = is_active
        if values:
            user = await self._update_returning(User.id == user_id, values=values)
        else:
            user = await self.find_by_id(user_id)
        if user is None:
            raise UserNotFound()
        return user
