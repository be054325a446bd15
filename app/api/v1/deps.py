"""
FastAPI dependencies — session, user service and role guards.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from fastapi import Depends, Request

from app.core.authorization import CurrentUser, require_admin, require_roles, resolve_identity
from app.core.sessions import Session, get_session
from app.models.user import UserRole
from app.services.user import UserService


# ── Services ────────────────────────────────────────────────────────
def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


# ── Auth dependencies ───────────────────────────────────────────────
async def get_current_user(session: Session = Depends(get_session)) -> CurrentUser:
    """Identity from the session claims; 401 when they are absent or malformed."""
    return resolve_identity(session)


async def require_admin_user(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Only allow the admin role to proceed."""
    return require_admin(current_user)


def require_any_role(*roles: UserRole) -> Callable[..., Awaitable[CurrentUser]]:
    """Build a guard admitting any of *roles*."""
    allowed = frozenset(roles)

    async def _guard(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        return require_roles(current_user, allowed)

    return _guard
