"""
Session claims and role guards.

Login writes three claims into the server-side session; every protected
route rebuilds a ``CurrentUser`` from them.  A missing or malformed claim is
treated exactly like no session at all.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass

from app.core.errors import Forbidden, Unauthorized
from app.core.sessions import Session
from app.models.user import UserRole

USER_ID = "user.id"
USERNAME = "user.username"
USER_ROLE = "user.role"


@dataclass(frozen=True)
class CurrentUser:
    id: uuid.UUID
    username: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def store_identity(session: Session, user_id: uuid.UUID, username: str, role: UserRole) -> None:
    """Rotate the session id, then record the authenticated identity."""
    session.cycle_id()
    session.insert(USER_ID, str(user_id))
    session.insert(USERNAME, username)
    session.insert(USER_ROLE, role.value)


def resolve_identity(session: Session) -> CurrentUser:
    raw_id = session.get(USER_ID)
    username = session.get(USERNAME)
    raw_role = session.get(USER_ROLE)
    if not raw_id or not username or not raw_role:
        raise Unauthorized("Invalid session")
    try:
        return CurrentUser(id=uuid.UUID(str(raw_id)), username=str(username), role=UserRole(raw_role))
    except ValueError:
        raise Unauthorized("Invalid session") from None


def require_admin(identity: CurrentUser) -> CurrentUser:
    if not identity.is_admin:
        raise Forbidden("Admin access required")
    return identity


def require_roles(identity: CurrentUser, allowed: Iterable[UserRole]) -> CurrentUser:
    if identity.role not in set(allowed):
        raise Forbidden("Insufficient permissions")
    return identity
