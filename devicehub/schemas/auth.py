"""Auth schemas."""

from __future__ import annotations

from pydantic import BaseModel


class TokenRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    key: str
    requires_mfa: bool = False


class MeResponse(BaseModel):
    username: str
    email: str = ""
    mfa_enabled: bool = False


class PasswordBreachRequest(BaseModel):
    password: str = ""


class PasswordBreachResponse(BaseModel):
    breached: bool
    count: int = 0
