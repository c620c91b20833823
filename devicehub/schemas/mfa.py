"""MFA management schemas: one request envelope, one response shape per action."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class MFARequest(BaseModel):
    # validated by the endpoint so that unknown actions and bad codes map to 400
    action: str
    code: str | None = None


class MFASetupResponse(BaseModel):
    secret: str
    otpauth_uri: str
    backup_codes: list[str]


class MFAStatusResponse(BaseModel):
    mfa_enabled: bool
    setup_at: datetime | None = None
    verified_at: datetime | None = None


class MFAVerifyResponse(BaseModel):
    valid: bool


class MFAActionResponse(BaseModel):
    success: bool = True
    message: str


class MFABackupCodeResponse(BaseModel):
    valid: bool
    remaining_codes: int | None = None


class ErrorResponse(BaseModel):
    error: str
