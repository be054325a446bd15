"""
Admin-only endpoints.
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.v1.deps import get_user_service, require_admin_user
from app.core.authorization import CurrentUser
from app.schemas.response import ApiResponse
from app.schemas.user import AdminDashboard, AdminUserUpdate
from app.services.user import UserService

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.get("")
async def dashboard(admin: CurrentUser = Depends(require_admin_user)) -> JSONResponse:
    payload = AdminDashboard(username=admin.username, message="Welcome to the admin dashboard")
    return ApiResponse.ok(payload).to_response()


@router.patch("/users/{user_id}")
async def update_user(
    user_id: uuid.UUID,
    body: AdminUserUpdate,
    admin: CurrentUser = Depends(require_admin_user),
    service: UserService = Depends(get_user_service),
) -> JSONResponse:
    """Change another account's role and/or active flag."""
    user = await service.admin_update(user_id, body)
    logger.info(
        "Admin %s updated user %s (role=%s, active=%s)",
        admin.id,
        user_id,
        user.role.value,
        user.is_active,
    )
    return ApiResponse.ok(user).to_response()
