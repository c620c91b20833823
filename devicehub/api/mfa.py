"""MFA management endpoint: a single POST with an ``action`` discriminator."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from auth import get_current_user
from config import settings
from database import get_db
from logging_config import user_id_var
from models.user import UserProfile
from schemas.mfa import (
    ErrorResponse,
    MFAActionResponse,
    MFABackupCodeResponse,
    MFARequest,
    MFASetupResponse,
    MFAStatusResponse,
    MFAVerifyResponse,
)
from services.mfa import InvalidCode, MFAError, MFAService
from services.mfa_store import MfaCredentialStore
from services.rate_limit import RateLimiter, get_rate_limiter
from services.security_events import SecurityEventSink

logger = logging.getLogger(__name__)

router = APIRouter()

# Actions that check a submitted code and are therefore throttled
_CODE_ACTIONS = {"verify", "enable", "disable", "verify_backup"}


# ---------------------------------------------------------------------------
# Action handlers
# ---------------------------------------------------------------------------


def _setup(service: MFAService, user: UserProfile, code: str | None) -> dict:
    result = service.setup(user)
    return MFASetupResponse(
        secret=result.secret,
        otpauth_uri=result.otpauth_uri,
        backup_codes=result.backup_codes,
    ).model_dump()


def _status(service: MFAService, user: UserProfile, code: str | None) -> dict:
    st = service.status(user)
    return MFAStatusResponse(
        mfa_enabled=st.mfa_enabled,
        setup_at=st.setup_at,
        verified_at=st.verified_at,
    ).model_dump(mode="json")


def _verify(service: MFAService, user: UserProfile, code: str | None) -> dict:
    return MFAVerifyResponse(valid=service.verify(user, code)).model_dump()


def _enable(service: MFAService, user: UserProfile, code: str | None) -> dict:
    service.enable(user, code)
    return MFAActionResponse(message="MFA enabled successfully").model_dump()


def _disable(service: MFAService, user: UserProfile, code: str | None) -> dict:
    service.disable(user, code)
    return MFAActionResponse(message="MFA disabled successfully").model_dump()


def _verify_backup(service: MFAService, user: UserProfile, code: str | None) -> dict:
    result = service.verify_backup(user, code)
    return MFABackupCodeResponse(
        valid=result.valid,
        remaining_codes=result.remaining_codes,
    ).model_dump(exclude_none=True)


_ACTIONS = {
    "setup": _setup,
    "status": _status,
    "verify": _verify,
    "enable": _enable,
    "disable": _disable,
    "verify_backup": _verify_backup,
}


# ---------------------------------------------------------------------------
# Throttling
# ---------------------------------------------------------------------------


def _retry_after(until: datetime | None) -> dict[str, str]:
    if until is None:
        return {}
    seconds = math.ceil((until - datetime.now(timezone.utc)).total_seconds())
    return {"Retry-After": str(max(seconds, 1))}


def _throttle(limiter: RateLimiter, user: UserProfile) -> None:
    identifier = f"mfa:{user.id}"

    locked_until = limiter.is_locked(identifier)
    if locked_until is not None:
        raise HTTPException(
            status_code=429,
            detail="Account temporarily locked due to too many failed attempts. Try again later.",
            headers=_retry_after(locked_until),
        )

    rate = limiter.check(
        identifier,
        settings.MFA_RATE_LIMIT_MAX,
        settings.MFA_RATE_LIMIT_WINDOW_SECONDS,
    )
    if not rate.allowed:
        raise HTTPException(
            status_code=429,
            detail="Too many MFA attempts. Please wait a minute.",
            headers=_retry_after(rate.reset_at),
        )


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------


@router.post(
    "/",
    responses={
        400: {"model": ErrorResponse, "description": "Malformed input or missing setup"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        429: {"model": ErrorResponse, "description": "Too many attempts"},
    },
)
def manage_mfa(
    payload: MFARequest,
    request: Request,
    user: UserProfile = Depends(get_current_user),
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Dispatch ``payload.action`` for the authenticated user."""
    user_id_var.set(str(user.id))
    handler = _ACTIONS.get(payload.action)
    if handler is None:
        raise HTTPException(status_code=400, detail="Invalid action")

    checks_code = payload.action in _CODE_ACTIONS
    if checks_code:
        _throttle(limiter, user)

    events = SecurityEventSink(
        db,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    service = MFAService(MfaCredentialStore(db), events)
    identifier = f"mfa:{user.id}"

    try:
        body = handler(service, user, payload.code)
    except InvalidCode as exc:
        limiter.record_failure(identifier)
        raise HTTPException(status_code=400, detail=str(exc))
    except MFAError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    if checks_code:
        if body.get("valid", True) and body.get("success", True):
            limiter.clear_failures(identifier)
        else:
            limiter.record_failure(identifier)

    logger.debug("MFA action %s completed", payload.action)
    return body
