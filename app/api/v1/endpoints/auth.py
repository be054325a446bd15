"""
Auth endpoints — registration, session login/logout, email verification and
password reset.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse

from app.api.v1.deps import get_current_user, get_user_service
from app.core.authorization import USER_ID, CurrentUser, store_identity
from app.core.config import settings
from app.core.errors import ValidationError
from app.core.rate_limit import limiter
from app.core.sessions import Session, get_session
from app.schemas.response import ApiResponse
from app.schemas.user import (
    CreateUserRequest,
    EmailRequest,
    LoginRequest,
    PasswordResetConfirm,
    UserResponse,
    WhoAmIResponse,
)
from app.services.user import UserService

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.post("/register", response_model=UserResponse)
async def register(
    body: CreateUserRequest,
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    """Create an unverified subscriber account and send its verification link."""
    user = await service.register(body)
    await service.send_verification(user.id, user.email)
    return user


@router.post("/login")
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    body: LoginRequest,
    session: Session = Depends(get_session),
    service: UserService = Depends(get_user_service),
) -> JSONResponse:
    """Authenticate and bind the identity to a freshly rotated session id."""
    summary = await service.login(body)
    store_identity(session, summary.id, summary.username, summary.role)
    return ApiResponse.ok(summary).to_response()


@router.post("/logout")
async def logout(session: Session = Depends(get_session)) -> JSONResponse:
    """Drop every claim; the old session id stops resolving."""
    user_id = session.get(USER_ID)
    session.clear()
    session.cycle_id()
    if user_id:
        logger.info("User %s logged out", user_id)
    return ApiResponse.ok(message="Logged out successfully").to_response()


@router.get("/whoami")
async def whoami(current_user: CurrentUser = Depends(get_current_user)) -> JSONResponse:
    identity = WhoAmIResponse(id=current_user.id, username=current_user.username, role=current_user.role)
    return ApiResponse.ok(identity).to_response()


# ── Email verification ──────────────────────────────────────────────
@router.get("/verify")
async def verify_email(
    token: str = Query(..., min_length=1),
    service: UserService = Depends(get_user_service),
) -> RedirectResponse:
    if not await service.verify_email(token):
        raise ValidationError("Invalid or expired verification link")
    return RedirectResponse(settings.VERIFY_REDIRECT_URL, status_code=status.HTTP_302_FOUND)


@router.post("/resend-verification", status_code=status.HTTP_204_NO_CONTENT)
async def resend_verification(
    body: EmailRequest,
    service: UserService = Depends(get_user_service),
) -> Response:
    """Same 204 whether or not the address has an account."""
    await service.resend_verification(body.email)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Password reset ──────────────────────────────────────────────────
@router.post("/password-reset/request", status_code=status.HTTP_204_NO_CONTENT)
async def request_password_reset(
    body: EmailRequest,
    service: UserService = Depends(get_user_service),
) -> Response:
    await service.request_password_reset(body.email)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/password-reset/confirm")
async def confirm_password_reset(
    body: PasswordResetConfirm,
    service: UserService = Depends(get_user_service),
) -> JSONResponse:
    if not await service.reset_password(body):
        raise ValidationError("Invalid or expired reset token")
    return ApiResponse.ok(message="Password has been reset").to_response()
