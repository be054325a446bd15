"""
Self-service profile endpoints, plus the moderator lookup.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.v1.deps import get_current_user, get_user_service, require_any_role
from app.core.authorization import CurrentUser
from app.models.user import UserRole
from app.schemas.response import ApiResponse
from app.schemas.user import ChangePasswordRequest, UpdateUserRequest
from app.services.user import UserService

router = APIRouter(prefix="/users", tags=["users"])

require_moderator = require_any_role(UserRole.ADMIN, UserRole.EDITOR)


@router.get("/me")
async def read_me(
    current_user: CurrentUser = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
) -> JSONResponse:
    """Return the full profile of the signed-in user."""
    return ApiResponse.ok(await service.get_user(current_user.id)).to_response()


@router.patch("/me")
async def update_me(
    body: UpdateUserRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
) -> JSONResponse:
    """Apply only the fields present in the body; an explicit null clears one."""
    user = await service.update_profile(current_user.id, body)
    return ApiResponse.ok(user).to_response()


@router.post("/me/password")
async def change_my_password(
    body: ChangePasswordRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
) -> JSONResponse:
    await service.change_password(current_user.id, body)
    return ApiResponse.ok(message="Password changed successfully").to_response()


@router.get("/{user_id}")
async def read_user(
    user_id: uuid.UUID,
    _moderator: CurrentUser = Depends(require_moderator),
    service: UserService = Depends(get_user_service),
) -> JSONResponse:
    return ApiResponse.ok(await service.get_user_summary(user_id)).to_response()
