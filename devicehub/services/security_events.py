"""Security event log: fire-and-forget audit trail."""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.security_event import SecurityEvent

logger = logging.getLogger(__name__)

MFA_ENABLED = "mfa_enabled"
MFA_DISABLED = "mfa_disabled"
MFA_BACKUP_CODE_USED = "mfa_backup_code_used"
MFA_VERIFY_FAILED = "mfa_verify_failed"
LOGIN_SUCCESS = "login_success"
LOGIN_FAILED = "login_failed"
LOGIN_LOCKED = "login_locked"


def log_security_event(
    db: Session,
    event_type: str,
    user_id: int | None = None,
    email: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    metadata: dict | None = None,
) -> None:
    """Append an event. Never raises; a failed write is logged and rolled back."""
    try:
        db.add(
            SecurityEvent(
                event_type=event_type,
                user_id=user_id,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                event_metadata=metadata or {},
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.warning("Failed to record security event %s", event_type, exc_info=True)


class SecurityEventSink:
    """Binds a session and the caller's request context for ``MFAService``."""

    def __init__(self, db: Session, ip_address: str | None = None, user_agent: str | None = None):
        self.db = db
        self.ip_address = ip_address
        self.user_agent = user_agent

    def emit(self, event_type: str, user, metadata: dict | None = None) -> None:
        log_security_event(
            self.db,
            event_type,
            user_id=user.id,
            email=user.email or None,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            metadata=metadata,
        )
