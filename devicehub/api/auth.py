"""Auth endpoints: token login with failed-login lockout, and the password breach check."""

from __future__ import annotations

import logging
import uuid

import bcrypt
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from auth import get_current_user
from config import settings
from database import get_db
from models.mfa import MfaCredential
from models.user import APIKey, UserProfile
from schemas.auth import (
    MeResponse,
    PasswordBreachRequest,
    PasswordBreachResponse,
    TokenRequest,
    TokenResponse,
)
from services import security_events
from services.password_breach import check_password_breach
from services.rate_limit import RateLimiter, get_rate_limiter

logger = logging.getLogger(__name__)

router = APIRouter()


def _verify_password(stored_hash: str, password: str) -> bool:
    """Verify password against stored bcrypt hash."""
    if not stored_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode(), stored_hash.encode())
    except (ValueError, UnicodeDecodeError):
        return False


def _mfa_enabled(db: Session, user: UserProfile) -> bool:
    cred = db.query(MfaCredential).filter(MfaCredential.user_id == user.id).first()
    return bool(cred and cred.is_enabled)


@router.post(
    "/token/",
    response_model=TokenResponse,
    responses={401: {"description": "Invalid credentials"}, 429: {"description": "Account locked"}},
)
def obtain_token(
    payload: TokenRequest,
    request: Request,
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    identifier = f"login:{payload.username.lower()}"
    ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")

    if limiter.is_locked(identifier) is not None:
        raise HTTPException(status_code=429, detail="Account temporarily locked. Try again later.")

    user = db.query(UserProfile).filter(UserProfile.username == payload.username).first()
    if not user or not user.is_active or not _verify_password(user.password_hash, payload.password):
        lockout = limiter.record_failure(identifier)
        security_events.log_security_event(
            db,
            security_events.LOGIN_LOCKED if lockout.is_locked else security_events.LOGIN_FAILED,
            user_id=user.id if user else None,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata={"username": payload.username, "attempts_remaining": lockout.attempts_remaining},
        )
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    limiter.clear_failures(identifier)

    api_key = db.query(APIKey).filter(APIKey.user_id == user.id).first()
    if api_key:
        api_key.key = str(uuid.uuid4())
    else:
        api_key = APIKey(user_id=user.id, key=str(uuid.uuid4()))
        db.add(api_key)
    db.commit()
    db.refresh(api_key)

    security_events.log_security_event(
        db,
        security_events.LOGIN_SUCCESS,
        user_id=user.id,
        email=user.email or None,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return {"key": api_key.key, "requires_mfa": _mfa_enabled(db, user)}


@router.get("/me/", response_model=MeResponse)
def me(user: UserProfile = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"username": user.username, "email": user.email, "mfa_enabled": _mfa_enabled(db, user)}


@router.post(
    "/password-breach/",
    response_model=PasswordBreachResponse,
    responses={400: {"description": "Password required"}, 429: {"description": "Too many checks"}},
)
def password_breach(
    payload: PasswordBreachRequest,
    request: Request,
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Report whether a candidate password appears in known breaches."""
    if not payload.password:
        raise HTTPException(status_code=400, detail="Password required")

    ip_address = request.client.host if request.client else "unknown"
    rate = limiter.check(
        f"password_breach:{ip_address}",
        settings.PASSWORD_BREACH_RATE_LIMIT_MAX,
        settings.PASSWORD_BREACH_RATE_LIMIT_WINDOW_SECONDS,
    )
    if not rate.allowed:
        raise HTTPException(status_code=429, detail="Too many password checks. Please wait a minute.")

    result = check_password_breach(payload.password)
    return {"breached": result.breached, "count": result.count}
