"""JSON response envelope shared by the structured API routes."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Generic, Literal, TypeVar

from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, model_serializer

T = TypeVar("T")

_OMIT_WHEN_NONE = ("code", "message", "data")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApiResponse(BaseModel, Generic[T]):
    status: Literal["ok", "error"]
    code: int | None = None
    message: str | None = None
    data: T | None = None
    timestamp: datetime = Field(default_factory=_utcnow)

    @model_serializer(mode="wrap")
    def _drop_empty(self, handler: Any) -> dict[str, Any]:
        payload = handler(self)
        return {k: v for k, v in payload.items() if v is not None or k not in _OMIT_WHEN_NONE}

    # ── Factories ────────────────────────────────────────────────────
    @classmethod
    def ok(cls, data: T | None = None, message: str | None = None, code: int | None = None) -> "ApiResponse[T]":
        return cls(status="ok", data=data, message=message, code=code)

    @classmethod
    def error(cls, message: str, code: int) -> "ApiResponse[T]":
        return cls(status="error", message=message, code=code)

    def to_response(self, status_code: int | None = None) -> JSONResponse:
        """Render the envelope, using ``code`` as the HTTP status when given."""
        return JSONResponse(
            status_code=status_code or self.code or 200,
            content=self.model_dump(mode="json"),
        )


class HealthResponse(BaseModel):
    status: str
    version: str
