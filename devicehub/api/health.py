"""Health check endpoints."""

from __future__ import annotations

import redis as redis_lib
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import get_db
from services.rate_limit import RateLimiter, get_rate_limiter

router = APIRouter(tags=["health"])


@router.get("/health/")
def health_check() -> dict:
    """Basic liveness check."""
    return {"status": "ok"}


@router.get("/health/detailed/")
def detailed_health_check(
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> dict:
    """Database and Redis reachability."""
    try:
        db.execute(text("SELECT 1"))
        database_status = "connected"
    except SQLAlchemyError as exc:
        database_status = f"error: {exc}"

    try:
        limiter.r.ping()
        redis_status = "connected"
    except redis_lib.RedisError as exc:
        redis_status = f"error: {exc}"

    ok = database_status == "connected" and redis_status == "connected"
    return {"status": "ok" if ok else "degraded", "database": database_status, "redis": redis_status}
