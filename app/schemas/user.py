"""Pydantic schemas for User registration, login, profile and lifecycle requests."""

from __future__ import annotations

import re
import uuid
from datetime import datetime

from pydantic import AnyHttpUrl, BaseModel, TypeAdapter, field_validator, validate_email
from pydantic_core import PydanticCustomError

from app.models.user import UserRole

_USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]+$")
_URL = TypeAdapter(AnyHttpUrl)


# ── Shared rules ────────────────────────────────────────────────────
def _check_length(v: str, *, min_len: int = 0, max_len: int, message: str) -> str:
    if not (min_len <= len(v) <= max_len):
        raise ValueError(message)
    return v


def _normalise_email(v: str) -> str:
    v = v.strip().lower()
    if len(v) > 255:
        raise ValueError("Email cannot exceed 255 characters")
    try:
        validate_email(v)
    except PydanticCustomError:
        raise ValueError("Invalid email address") from None
    return v


def _check_url(v: str | None, label: str) -> str | None:
    if v is None:
        return v
    _check_length(v, max_len=500, message=f"{label} cannot exceed 500 characters")
    try:
        _URL.validate_python(v)
    except ValueError:
        raise ValueError(f"{label} must be valid") from None
    return v


def _check_new_password(v: str, label: str = "Password") -> str:
    return _check_length(v, min_len=8, max_len=128, message=f"{label} must be 8-128 characters")


# ── Registration / login ────────────────────────────────────────────
class CreateUserRequest(BaseModel):
    username: str
    email: str
    password: str
    display_name: str | None = None

    @field_validator("username")
    @classmethod
    def _username(cls, v: str) -> str:
        _check_length(v, min_len=3, max_len=50, message="Username must be 3-50 characters")
        if not _USERNAME_RE.match(v):
            raise ValueError("Username can only contain letters, numbers, and underscores")
        return v

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return _normalise_email(v)

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        return _check_new_password(v)

    @field_validator("display_name")
    @classmethod
    def _display_name(cls, v: str | None) -> str | None:
        if v is not None:
            _check_length(v, max_len=100, message="Display name cannot exceed 100 characters")
        return v


class LoginRequest(BaseModel):
    username_or_email: str
    password: str

    @field_validator("username_or_email")
    @classmethod
    def _identifier(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Username or email is required")
        return v

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        if not v:
            raise ValueError("Password is required")
        return v


# ── Profile ─────────────────────────────────────────────────────────
class UpdateUserRequest(BaseModel):
    """Partial profile update: only fields present in the payload are applied."""

    display_name: str | None = None
    bio: str | None = None
    avatar_url: str | None = None
    social_twitter: str | None = None
    social_github: str | None = None
    website_url: str | None = None

    @field_validator("display_name")
    @classmethod
    def _display_name(cls, v: str | None) -> str | None:
        if v is not None:
            _check_length(v, max_len=100, message="Display name cannot exceed 100 characters")
        return v

    @field_validator("bio")
    @classmethod
    def _bio(cls, v: str | None) -> str | None:
        if v is not None:
            _check_length(v, max_len=1000, message="Bio cannot exceed 1000 characters")
        return v

    @field_validator("avatar_url")
    @classmethod
    def _avatar_url(cls, v: str | None) -> str | None:
        return _check_url(v, "Avatar URL")

    @field_validator("website_url")
    @classmethod
    def _website_url(cls, v: str | None) -> str | None:
        return _check_url(v, "Website URL")

    @field_validator("social_twitter")
    @classmethod
    def _twitter(cls, v: str | None) -> str | None:
        if v is not None:
            _check_length(v, max_len=100, message="Twitter handle cannot exceed 100 characters")
        return v

    @field_validator("social_github")
    @classmethod
    def _github(cls, v: str | None) -> str | None:
        if v is not None:
            _check_length(v, max_len=100, message="GitHub username cannot exceed 100 characters")
        return v


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str

    @field_validator("current_password")
    @classmethod
    def _current(cls, v: str) -> str:
        if not v:
            raise ValueError("Current password is required")
        return v

    @field_validator("new_password")
    @classmethod
    def _new(cls, v: str) -> str:
        return _check_new_password(v, "New password")


# ── Email verification / password reset ─────────────────────────────
class EmailRequest(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return _normalise_email(v)


class PasswordResetConfirm(BaseModel):
    token: str
    new_password: str

    @field_validator("token")
    @classmethod
    def _token(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Reset token is required")
        return v

    @field_validator("new_password")
    @classmethod
    def _new(cls, v: str) -> str:
        return _check_new_password(v, "New password")


# ── Admin ───────────────────────────────────────────────────────────
class AdminUserUpdate(BaseModel):
    role: UserRole | None = None
    is_active: bool | None = None


# ── Responses ───────────────────────────────────────────────────────
class UserResponse(BaseModel):
    """Public user record. Never carries the password hash or pending tokens."""

    id: uuid.UUID
    username: str
    email: str
    display_name: str | None
    bio: str | None
    avatar_url: str | None
    role: UserRole
    is_active: bool
    email_verified: bool
    social_twitter: str | None
    social_github: str | None
    website_url: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class UserSummary(BaseModel):
    id: uuid.UUID
    username: str
    display_name: str | None
    avatar_url: str | None
    role: UserRole

    model_config = {"from_attributes": True}


class WhoAmIResponse(BaseModel):
    id: uuid.UUID
    username: str
    role: UserRole


class AdminDashboard(BaseModel):
    username: str
    message: str
