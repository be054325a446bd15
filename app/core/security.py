"""
Password hashing (argon2 via passlib) and single-use token issuance.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi.concurrency import run_in_threadpool
from passlib.context import CryptContext

from app.core.config import settings
from app.core.errors import HashingError

# 256 bits of entropy, URL-safe (travels in verification links).
_TOKEN_BYTES = 32


# ── Passwords ───────────────────────────────────────────────────────
class PasswordHasher:
    """Salted, memory-hard password hashing.

    ``hash`` / ``verify`` are CPU-bound; request handlers use the ``*_async``
    variants, which run them on the worker thread pool instead of the event
    loop.
    """

    def __init__(
        self,
        time_cost: int = settings.ARGON2_TIME_COST,
        memory_cost: int = settings.ARGON2_MEMORY_COST,
        parallelism: int = settings.ARGON2_PARALLELISM,
    ) -> None:
        self._context = CryptContext(
            schemes=["argon2"],
            deprecated="auto",
            argon2__type="id",
            argon2__rounds=time_cost,
            argon2__memory_cost=memory_cost,
            argon2__parallelism=parallelism,
        )
        self._dummy_hash: str | None = None

    def hash(self, plain: str) -> str:
        try:
            return self._context.hash(plain)
        except (ValueError, TypeError) as exc:
            raise HashingError(f"Could not hash password: {exc}") from exc

    def verify(self, plain: str, hashed: str) -> bool:
        """Return whether *plain* matches *hashed*.

        A wrong password is ``False``; a stored hash that cannot be parsed is a
        data-integrity fault and raises ``HashingError``.
        """
        try:
            return self._context.verify(plain, hashed)
        except (ValueError, TypeError) as exc:
            raise HashingError(f"Stored password hash is corrupt: {exc}") from exc

    def dummy_verify(self, plain: str) -> None:
        """Spend one verification worth of work and discard the result."""
        if self._dummy_hash is None:
            self._dummy_hash = self.hash(secrets.token_urlsafe(16))
        self._context.verify(plain, self._dummy_hash)

    async def hash_async(self, plain: str) -> str:
        return await run_in_threadpool(self.hash, plain)

    async def verify_async(self, plain: str, hashed: str) -> bool:
        return await run_in_threadpool(self.verify, plain, hashed)

    async def dummy_verify_async(self, plain: str) -> None:
        await run_in_threadpool(self.dummy_verify, plain)


# ── Single-use tokens ───────────────────────────────────────────────
@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime


class TokenIssuer:
    """Opaque, unguessable tokens with an absolute expiry."""

    def __init__(self, ttl: timedelta) -> None:
        if ttl <= timedelta(0):
            raise ValueError("Token TTL must be positive")
        self.ttl = ttl

    def issue(self, now: datetime | None = None) -> IssuedToken:
        now = now or datetime.now(timezone.utc)
        return IssuedToken(token=secrets.token_urlsafe(_TOKEN_BYTES), expires_at=now + self.ttl)


def verification_token_issuer() -> TokenIssuer:
    return TokenIssuer(timedelta(hours=settings.VERIFICATION_TOKEN_TTL_HOURS))


def reset_token_issuer() -> TokenIssuer:
    return TokenIssuer(timedelta(minutes=settings.RESET_TOKEN_TTL_MINUTES))
