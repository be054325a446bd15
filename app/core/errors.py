"""
Domain error taxonomy.

Every failure the core can report is an ``AppError`` subclass carrying the
HTTP status it maps to and a client-safe message.  Raising happens in the
service / repository / guard layers; rendering happens once, in
``app.core.exceptions``.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for errors rendered by the boundary handler."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def public_message(self) -> str:
        """Text safe to show to clients. Infrastructure faults stay generic."""
        if self.status_code >= 500:
            return AppError.default_message
        return self.message


class ValidationError(AppError):
    status_code = 400
    default_message = "Validation failed"


class ResendRateLimited(ValidationError):
    status_code = 429
    default_message = "Please wait before requesting another verification email"


class UserNotFound(AppError):
    status_code = 404
    default_message = "User not found"


class UsernameExists(AppError):
    status_code = 409
    default_message = "Username already exists"


class EmailExists(AppError):
    status_code = 409
    default_message = "Email already exists"


class InvalidCredentials(AppError):
    status_code = 401
    default_message = "Invalid credentials"


class Unauthorized(AppError):
    status_code = 401
    default_message = "Authentication required"


class Forbidden(AppError):
    status_code = 403
    default_message = "Insufficient permissions"


class StorageError(AppError):
    status_code = 500
    default_message = "Database error"


class HashingError(AppError):
    status_code = 500
    default_message = "Password hashing error"


def format_validation_errors(errors: list[dict]) -> str:
    """Flatten pydantic error dicts into one client-facing message.

    Messages raised by our own validators are used verbatim; built-in pydantic
    errors are prefixed with the offending field.
    """
    parts: list[str] = []
    for err in errors:
        ctx_error = (err.get("ctx") or {}).get("error")
        if ctx_error is not None:
            parts.append(str(ctx_error))
            continue
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query")]
        msg = err.get("msg", "Invalid value")
        parts.append(f"{'.'.join(loc)}: {msg}" if loc else msg)
    return "Validation failed: " + "; ".join(parts)
