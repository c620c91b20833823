"""FastAPI router aggregation."""

from fastapi import APIRouter

from api.auth import router as auth_router
from api.mfa import router as mfa_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(auth_router, prefix="/auth", tags=["auth"])
api_router.include_router(mfa_router, prefix="/mfa", tags=["mfa"])
