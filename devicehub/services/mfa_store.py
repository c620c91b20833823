"""Credential store: persistence of per-user TOTP credentials.

Writes for one user are serialised by an in-process lock keyed by user id
and by ``SELECT ... FOR UPDATE`` on an existing credential row. A first-time
insert has no row to lock, so ``replace`` falls back to updating the row another
worker inserted when its own INSERT hits the unique ``user_id`` constraint.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.mfa import MfaCredential

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Per-user locks
# ---------------------------------------------------------------------------

_locks: dict[int, threading.Lock] = {}
_locks_guard = threading.Lock()


@contextmanager
def user_lock(user_id: int) -> Iterator[None]:
    """Hold the process-wide lock for *user_id*."""
    with _locks_guard:
        lock = _locks.setdefault(user_id, threading.Lock())
    with lock:
        yield


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class MfaCredentialStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: int) -> MfaCredential | None:
        return self.db.query(MfaCredential).filter(MfaCredential.user_id == user_id).first()

    def _get_for_update(self, user_id: int) -> MfaCredential | None:
        return (
            self.db.query(MfaCredential)
            .filter(MfaCredential.user_id == user_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def replace(self, user_id: int, secret: str, backup_codes: list[str]) -> MfaCredential:
        """Insert or overwrite the credential; the new one always starts disabled."""
        with user_lock(user_id):
            cred = self._get_for_update(user_id)
            if cred is None:
                cred = MfaCredential(user_id=user_id)
                self.db.add(cred)
            self._reset(cred, secret, backup_codes)
            try:
                self.db.commit()
            except IntegrityError:
                # another worker inserted this user's row after our read
                self.db.rollback()
                cred = self._get_for_update(user_id)
                if cred is None:
                    raise
                logger.info("Concurrent MFA setup for user %s, overwriting", user_id)
                self._reset(cred, secret, backup_codes)
                self.db.commit()
            self.db.refresh(cred)
            return cred

    @staticmethod
    def _reset(cred: MfaCredential, secret: str, backup_codes: list[str]) -> None:
        cred.secret = secret
        cred.backup_codes = list(backup_codes)
        cred.is_enabled = False
        cred.created_at = _utcnow()
        cred.verified_at = None

    def mark_enabled(self, user_id: int) -> MfaCredential | None:
        """Flip ``is_enabled``; ``verified_at`` is only stamped on the first flip."""
        with user_lock(user_id):
            cred = self._get_for_update(user_id)
            if cred is None:
                self.db.rollback()
                return None
            if not cred.is_enabled:
                cred.is_enabled = True
                cred.verified_at = _utcnow()
            self.db.commit()
            self.db.refresh(cred)
            return cred

    def delete(self, user_id: int) -> bool:
        with user_lock(user_id):
            cred = self._get_for_update(user_id)
            if cred is None:
                self.db.rollback()
                return False
            self.db.delete(cred)
            self.db.commit()
            return True

    def consume_backup_code(self, user_id: int, code: str) -> tuple[bool, int]:
        """Remove *code* (case-insensitive) if present.

        Returns ``(matched, remaining)``. On a miss the record is untouched and
        ``remaining`` is the current count, so ``(False, 0)`` means there was
        nothing to match against (no record, or every code used up).
        """
        wanted = code.upper()
        with user_lock(user_id):
            cred = self._get_for_update(user_id)
            codes = list(cred.backup_codes or []) if cred is not None else []

            try:
                index = [c.upper() for c in codes].index(wanted)
            except ValueError:
                self.db.rollback()
                return False, len(codes)

            del codes[index]
            cred.backup_codes = codes
            self.db.commit()
            logger.info("Backup code consumed for user %s, %d remaining", user_id, len(codes))
            return True, len(codes)
