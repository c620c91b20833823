"""TOTP-based MFA enrollment: setup, enable/disable, status, backup codes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from config import settings
from services import security_events
from services.mfa_store import MfaCredentialStore
from services.totp import (
    BACKUP_CODE_LENGTH,
    build_otpauth_uri,
    generate_backup_codes,
    generate_secret,
    is_code_format,
    verify_code,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class MFAError(Exception):
    """Base for failures the caller can act on; ``str(exc)`` is user-facing."""

    default_message = "MFA operation failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class NotSetUp(MFAError):
    default_message = "MFA not set up. Please run setup first."


class InvalidCode(MFAError):
    default_message = "Invalid verification code"


class MalformedInput(MFAError):
    default_message = "Invalid code format"


class NoBackupCodes(MFAError):
    default_message = "No backup codes found"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class SetupResult:
    secret: str
    otpauth_uri: str
    backup_codes: list[str] = field(default_factory=list)


@dataclass
class MfaStatus:
    mfa_enabled: bool = False
    setup_at: datetime | None = None
    verified_at: datetime | None = None


@dataclass
class BackupCodeResult:
    valid: bool
    remaining_codes: int | None = None


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class MFAService:
    """Enrollment state machine: NOT_SET_UP → PENDING_VERIFICATION → ENABLED.

    ``setup`` may run in any state and always lands in PENDING_VERIFICATION
    with a fresh secret. ``disable`` deletes the credential outright.
    """

    def __init__(
        self,
        store: MfaCredentialStore,
        events: security_events.SecurityEventSink | None = None,
        issuer: str | None = None,
        window: int | None = None,
        time_step_seconds: int | None = None,
    ):
        self.store = store
        self.events = events
        self.issuer = issuer or settings.MFA_ISSUER
        self.window = settings.MFA_VERIFY_WINDOW if window is None else window
        self.time_step_seconds = time_step_seconds or settings.MFA_TIME_STEP_SECONDS

    def _emit(self, event_type: str, user, metadata: dict | None = None) -> None:
        if self.events is not None:
            self.events.emit(event_type, user, metadata)

    def _check_code(self, secret: str, code: str) -> bool:
        return verify_code(secret, code, window=self.window, time_step_seconds=self.time_step_seconds)

    def _require_code_format(self, code: str | None) -> str:
        if not is_code_format(code):
            raise MalformedInput()
        return code

    def _require_credential(self, user):
        cred = self.store.get(user.id)
        if cred is None:
            raise NotSetUp()
        return cred

    # ── Operations ──────────────────────────────────────────────────────

    def setup(self, user) -> SetupResult:
        """Generate and store a new secret + backup codes; MFA stays disabled."""
        secret = generate_secret()
        backup_codes = generate_backup_codes(settings.MFA_BACKUP_CODE_COUNT)
        self.store.replace(user.id, secret, backup_codes)
        logger.info("MFA setup started for user %s", user.id)

        uri = build_otpauth_uri(secret, user.account_label, self.issuer, self.time_step_seconds)
        return SetupResult(secret=secret, otpauth_uri=uri, backup_codes=backup_codes)

    def verify(self, user, code: str | None) -> bool:
        """Check a code against the stored secret without changing any state."""
        code = self._require_code_format(code)
        cred = self._require_credential(user)
        valid = self._check_code(cred.secret, code)
        if not valid:
            self._emit(security_events.MFA_VERIFY_FAILED, user)
        return valid

    def enable(self, user, code: str | None) -> None:
        code = self._require_code_format(code)
        cred = self._require_credential(user)
        if not self._check_code(cred.secret, code):
            raise InvalidCode()

        if self.store.mark_enabled(user.id) is None:
            # disabled concurrently between the read and the update
            raise NotSetUp()
        logger.info("MFA enabled for user %s", user.id)
        self._emit(security_events.MFA_ENABLED, user)

    def disable(self, user, code: str | None) -> None:
        code = self._require_code_format(code)
        cred = self._require_credential(user)
        if not self._check_code(cred.secret, code):
            raise InvalidCode()

        if not self.store.delete(user.id):
            raise NotSetUp()
        logger.info("MFA disabled for user %s", user.id)
        self._emit(security_events.MFA_DISABLED, user)

    def status(self, user) -> MfaStatus:
        cred = self.store.get(user.id)
        if cred is None:
            return MfaStatus()
        return MfaStatus(
            mfa_enabled=bool(cred.is_enabled),
            setup_at=cred.created_at,
            verified_at=cred.verified_at,
        )

    def verify_backup(self, user, code: str | None) -> BackupCodeResult:
        """Consume one recovery code. A miss leaves the stored codes untouched."""
        if not isinstance(code, str) or len(code) != BACKUP_CODE_LENGTH:
            raise MalformedInput("Invalid backup code format")

        matched, remaining = self.store.consume_backup_code(user.id, code)
        if not matched:
            if remaining == 0:
                raise NoBackupCodes()
            return BackupCodeResult(valid=False)

        self._emit(security_events.MFA_BACKUP_CODE_USED, user, {"remaining_codes": remaining})
        return BackupCodeResult(valid=True, remaining_codes=remaining)
