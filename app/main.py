"""
Gatekeeper — Application entry point.

This is the **only** file that assembles the app.  All business logic
lives in the `services/`, `repositories/`, `api/` and `core/` packages.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine

from app.api.v1.api import api_router
from app.core.config import settings
from app.core.exceptions import register_exception_handlers
from app.core.rate_limit import ResendRateLimiter, limiter
from app.core.security import PasswordHasher
from app.core.sessions import SessionMiddleware, SessionStore
from app.db.base import Base
from app.db.session import build_session_factory
from app.db.session import engine as default_engine

# Ensure all models are imported so metadata.create_all can see them
from app.models.session import SessionRecord  # noqa: F401
from app.models.user import UserRole
from app.repositories.user import SqlAlchemyUserRepository
from app.schemas.user import CreateUserRequest
from app.services.user import UserService

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


async def seed_first_admin(service: UserService) -> None:
    """Create the configured admin account on first run (verified, role admin)."""
    username = settings.FIRST_ADMIN_USERNAME
    if not username:
        return
    repository = service.repository
    if await repository.find_by_username(username) is not None:
        return
    if await repository.find_by_email(settings.FIRST_ADMIN_EMAIL) is not None:
        logger.warning(
            "Skipping admin seed: %s is already registered to another account",
            settings.FIRST_ADMIN_EMAIL,
        )
        return

    user = await service.register(
        CreateUserRequest(
            username=username,
            email=settings.FIRST_ADMIN_EMAIL,
            password=settings.FIRST_ADMIN_PASSWORD,
            display_name="System Administrator",
        )
    )
    await repository.set_role(user.id, UserRole.ADMIN)
    await service.verify_email(await service.set_verification_token(user.id))
    logger.info("Default admin created: %s (password: <redacted>)", username)


# ── App factory ─────────────────────────────────────────────────────
def create_app(engine: AsyncEngine | None = None) -> FastAPI:
    engine = engine or default_engine
    session_factory = build_session_factory(engine)

    session_store = SessionStore(session_factory)
    hasher = PasswordHasher()
    user_service = UserService(
        repository=SqlAlchemyUserRepository(session_factory, hasher),
        hasher=hasher,
        resend_limiter=ResendRateLimiter(),
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        # Create all tables
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables initialised")

        await seed_first_admin(user_service)
        purged = await session_store.purge_expired()
        if purged:
            logger.info("Purged %d expired sessions", purged)

        logger.info("🚀 %s v%s started", settings.PROJECT_NAME, settings.VERSION)
        yield
        await engine.dispose()
        logger.info("Shutdown complete")

    application = FastAPI(
        title=settings.PROJECT_NAME,
        description="Accounts, sessions and role-based access",
        version=settings.VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    application.state.user_service = user_service
    application.state.limiter = limiter

    # Server-side sessions (inner), CORS (outer)
    application.add_middleware(
        SessionMiddleware,
        store=session_store,
        cookie_name=settings.SESSION_COOKIE_NAME,
        secure=settings.COOKIE_SECURE,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Global exception handlers (prevent stack-trace leakage)
    register_exception_handlers(application)

    application.include_router(api_router)

    return application


app = create_app()
