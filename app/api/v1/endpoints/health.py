"""
Liveness check.
"""

from __future__ import annotations

from fastapi import APIRouter

from app.core.config import settings
from app.schemas.response import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Public health check; no authentication, no database round-trip."""
    return HealthResponse(status="ok", version=settings.VERSION)
