"""SQLAlchemy models: re-export all."""

from models.user import UserProfile, APIKey  # noqa: F401
from models.mfa import MfaCredential  # noqa: F401
from models.security_event import SecurityEvent  # noqa: F401
