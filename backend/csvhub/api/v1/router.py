"""
Main API v1 router for csvhub.
"""

from fastapi import APIRouter

from csvhub.api.v1 import auth, csv_files, health, users

api_router = APIRouter(prefix="/v1")

# Include all endpoint routers
api_router.include_router(auth.router, prefix="/auth", tags=["authentication"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(csv_files.router, prefix="/csv", tags=["csv"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
