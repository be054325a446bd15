"""
Shared test fixtures for the Gatekeeper test suite.

Every test gets its own in-memory SQLite engine (aiosqlite + StaticPool) and
its own app instance, so sessions, users and the resend tracker never leak
between tests.
"""

import os
import sys
from typing import AsyncGenerator

import pytest

# Ensure project root is importable
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Override environment BEFORE importing application modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CORS_ORIGINS"] = '["*"]'
os.environ["LOGIN_RATE_LIMIT"] = "1000/minute"
# Cheap argon2 parameters; the production defaults take ~100ms per hash
os.environ["ARGON2_TIME_COST"] = "1"
os.environ["ARGON2_MEMORY_COST"] = "1024"
os.environ["ARGON2_PARALLELISM"] = "1"

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.core.rate_limit import limiter
from app.core.security import PasswordHasher
from app.db.base import Base
from app.db.session import build_engine, build_session_factory
from app.main import create_app
from app.models.user import User, UserRole
from app.services.mailer import Mailer
from app.services.user import UserService


class RecordingMailer(Mailer):
    """Keeps every outgoing message so tests can pick the token out."""

    def __init__(self) -> None:
        self.verifications: list[tuple[str, str]] = []
        self.resets: list[tuple[str, str]] = []

    async def send_verification(self, email: str, token: str) -> None:
        self.verifications.append((email, token))

    async def send_password_reset(self, email: str, token: str) -> None:
        self.resets.append((email, token))

    def last_verification_token(self, email: str) -> str:
        return [t for e, t in self.verifications if e == email][-1]

    def last_reset_token(self, email: str) -> str:
        return [t for e, t in self.resets if e == email][-1]


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create all tables before usage and dispose after."""
    test_engine = build_engine("sqlite+aiosqlite:///:memory:")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def app(engine: AsyncEngine, mailer: RecordingMailer) -> FastAPI:
    application = create_app(engine)
    application.state.user_service.mailer = mailer
    limiter.reset()
    return application


@pytest.fixture
def user_service(app: FastAPI) -> UserService:
    return app.state.user_service


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Return a raw database session for direct queries in tests."""
    async with session_factory() as session:
        yield session


# ── Helpers ─────────────────────────────────────────────────────────
@pytest.fixture
def register_verified(async_client: AsyncClient, mailer: RecordingMailer):
    """Register an account through the API and follow its verification link."""

    async def _register(username: str, email: str, password: str = "password123") -> dict:
        resp = await async_client.post(
            "/auth/register",
            json={"username": username, "email": email, "password": password},
        )
        assert resp.status_code == 200, resp.text
        token = mailer.last_verification_token(email.lower())
        verify = await async_client.get("/auth/verify", params={"token": token})
        assert verify.status_code == 302
        return resp.json()

    return _register


@pytest.fixture
def login(async_client: AsyncClient):
    async def _login(username_or_email: str, password: str = "password123"):
        return await async_client.post(
            "/auth/login",
            json={"username_or_email": username_or_email, "password": password},
        )

    return _login


@pytest.fixture
def promote(session_factory: async_sessionmaker[AsyncSession]):
    """Set a user's role directly in the database."""

    async def _promote(username: str, role: UserRole = UserRole.ADMIN) -> None:
        async with session_factory() as session:
            await session.execute(update(User).where(User.username == username).values(role=role))
            await session.commit()

    return _promote
