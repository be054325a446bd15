"""
User service — the only place business rules about accounts live.

Inputs are validated here (via the request schemas) before the repository is
touched.  Security-sensitive outcomes are collapsed:

- ``login`` raises the same ``InvalidCredentials`` for an unknown identifier,
  a wrong password, and an inactive or unverified account.
- ``resend_verification`` / ``request_password_reset`` succeed identically
  whether or not the address belongs to an account.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from app.core.errors import (
    InvalidCredentials,
    ResendRateLimited,
    UserNotFound,
    ValidationError,
    format_validation_errors,
)
from app.core.rate_limit import ResendRateLimiter
from app.core.security import PasswordHasher, TokenIssuer, reset_token_issuer, verification_token_issuer
from app.models.user import User
from app.repositories.user import UserRepository
from app.schemas.user import (
    AdminUserUpdate,
    ChangePasswordRequest,
    CreateUserRequest,
    EmailRequest,
    LoginRequest,
    PasswordResetConfirm,
    UpdateUserRequest,
    UserResponse,
    UserSummary,
)
from app.services.mailer import LoggingMailer, Mailer

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _validated(model: type[M], data: M | Mapping[str, Any]) -> M:
    """Coerce *data* into *model*, reporting failures as ``ValidationError``."""
    if isinstance(data, model):
        return data
    payload = data.model_dump(exclude_unset=True) if isinstance(data, BaseModel) else data
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(format_validation_errors(list(exc.errors()))) from exc


class UserService:
    def __init__(
        self,
        repository: UserRepository,
        hasher: PasswordHasher,
        verification_tokens: TokenIssuer | None = None,
        reset_tokens: TokenIssuer | None = None,
        resend_limiter: ResendRateLimiter | None = None,
        mailer: Mailer | None = None,
    ) -> None:
        self.repository = repository
        self.hasher = hasher
        self.verification_tokens = (
            verification_tokens if verification_tokens is not None else verification_token_issuer()
        )
        self.reset_tokens = reset_tokens if reset_tokens is not None else reset_token_issuer()
        # Explicit None checks: an empty ResendRateLimiter is falsy.
        self.resend_limiter = resend_limiter if resend_limiter is not None else ResendRateLimiter()
        self.mailer = mailer if mailer is not None else LoggingMailer()

    # ── Registration & login ────────────────────────────────────────
    async def register(self, request: CreateUserRequest | Mapping[str, Any]) -> UserResponse:
        request = _validated(CreateUserRequest, request)
        user = await self.repository.create(request)
        logger.info("Registered user %s (%s)", user.username, user.id)
        return UserResponse.model_validate(user)

    async def login(self, request: LoginRequest | Mapping[str, Any]) -> UserSummary:
        request = _validated(LoginRequest, request)

        user = await self.repository.find_by_username_or_email(request.username_or_email)
        if user is None:
            await self.hasher.dummy_verify_async(request.password)
            logger.info("Login failed: unknown identifier")
            raise InvalidCredentials()

        if not await self.repository.verify_password(user, request.password):
            logger.info("Login failed for user %s: bad password", user.id)
            raise InvalidCredentials()

        if not user.is_active or not user.email_verified:
            logger.info(
                "Login refused for user %s (active=%s, verified=%s)",
                user.id,
                user.is_active,
                user.email_verified,
            )
            raise InvalidCredentials()

        logger.info("User %s logged in", user.id)
        return UserSummary.model_validate(user)

    # ── Lookups ─────────────────────────────────────────────────────
    async def _get_or_404(self, user_id: uuid.UUID) -> User:
        user = await self.repository.find_by_id(user_id)
        if user is None:
            raise UserNotFound()
        return user

    async def get_user(self, user_id: uuid.UUID) -> UserResponse:
        return UserResponse.model_validate(await self._get_or_404(user_id))

    async def get_user_summary(self, user_id: uuid.UUID) -> UserSummary:
        return UserSummary.model_validate(await self._get_or_404(user_id))

    # ── Profile & password ──────────────────────────────────────────
    async def update_profile(
        self, user_id: uuid.UUID, request: UpdateUserRequest | Mapping[str, Any]
    ) -> UserResponse:
        request = _validated(UpdateUserRequest, request)
        user = await self.repository.update(user_id, request.model_dump(exclude_unset=True))
        return UserResponse.model_validate(user)

    async def change_password(
        self, user_id: uuid.UUID, request: ChangePasswordRequest | Mapping[str, Any]
    ) -> None:
        request = _validated(ChangePasswordRequest, request)
        user = await self._get_or_404(user_id)
        if not await self.repository.verify_password(user, request.current_password):
            raise InvalidCredentials()
        await self.repository.change_password(user_id, request.new_password)
        logger.info("Password changed for user %s", user_id)

    # ── Email verification ──────────────────────────────────────────
    async def set_verification_token(self, user_id: uuid.UUID) -> str:
        issued = self.verification_tokens.issue()
        await self.repository.set_email_verification_token(user_id, issued.token, issued.expires_at)
        return issued.token

    async def send_verification(self, user_id: uuid.UUID, email: str) -> str:
        """Issue a fresh verification token and hand it to the mailer."""
        token = await self.set_verification_token(user_id)
        await self.mailer.send_verification(email, token)
        return token

    async def verify_email(self, token: str) -> bool:
        user = await self.repository.verify_email(token)
        if user is None:
            logger.info("Email verification rejected: unknown or expired token")
            return False
        logger.info("Email verified for user %s", user.id)
        return True

    async def resend_verification(self, email: str) -> None:
        email = _validated(EmailRequest, {"email": email}).email

        if not self.resend_limiter.allow(email):
            logger.warning("Verification resend throttled")
            raise ResendRateLimited()

        user = await self.repository.find_by_email(email)
        if user is None or user.email_verified:
            return
        # A new token replaces any unconsumed one.
        await self.send_verification(user.id, user.email)

    # ── Password reset ──────────────────────────────────────────────
    async def set_password_reset_token(self, user_id: uuid.UUID) -> str:
        issued = self.reset_tokens.issue()
        await self.repository.set_password_reset_token(user_id, issued.token, issued.expires_at)
        return issued.token

    async def request_password_reset(self, email: str) -> None:
        email = _validated(EmailRequest, {"email": email}).email
        user = await self.repository.find_by_email(email)
        if user is None:
            return
        token = await self.set_password_reset_token(user.id)
        await self.mailer.send_password_reset(user.email, token)

    async def reset_password(self, request: PasswordResetConfirm | Mapping[str, Any]) -> bool:
        request = _validated(PasswordResetConfirm, request)
        user = await self.repository.reset_password(request.token, request.new_password)
        if user is None:
            logger.info("Password reset rejected: unknown or expired token")
            return False
        logger.info("Password reset completed for user %s", user.id)
        return True

    # ── Administration ──────────────────────────────────────────────
    async def admin_update(
        self, user_id: uuid.UUID, request: AdminUserUpdate | Mapping[str, Any]
    ) -> UserResponse:
        request = _validated(AdminUserUpdate, request)
        user = await self.repository.set_access(user_id, role=request.role, is_active=request.is_active)
        return UserResponse.model_validate(user)

