"""
API router aggregator — wires all endpoint modules together.
"""

from fastapi import APIRouter

from app.api.v1.endpoints import admin, auth, health, users

api_router = APIRouter()

# Registration, login/logout, verification, password reset
api_router.include_router(auth.router)

# Own profile, moderator lookup
api_router.include_router(users.router)

# Dashboard, role & activation management
api_router.include_router(admin.router)

# Liveness
api_router.include_router(health.router)
