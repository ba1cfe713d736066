"""API router aggregator."""
from fastapi import APIRouter

from gatekeeper.api.routes import auth, rbac, users

api_router = APIRouter(prefix="/api")
api_router.include_router(auth.router)
api_router.include_router(rbac.router)
api_router.include_router(users.router)

__all__ = ["api_router"]
