"""Encrypted column types: Fernet at rest, plaintext in Python."""

from __future__ import annotations

import json
import logging

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import String, Text
from sqlalchemy.types import TypeDecorator

from config import settings

logger = logging.getLogger(__name__)

_fernet = Fernet(settings.FIELD_ENCRYPTION_KEY.encode()) if settings.FIELD_ENCRYPTION_KEY else None


def _encrypt(value: str) -> str:
    if _fernet is None:
        return value
    return _fernet.encrypt(value.encode()).decode()


def _decrypt(value: str) -> str:
    """Decrypt *value*; rows written before a key was configured come back as-is."""
    if _fernet is None:
        return value
    try:
        return _fernet.decrypt(value.encode()).decode()
    except InvalidToken:
        return value


class EncryptedString(TypeDecorator):
    """Transparently encrypts/decrypts string values using Fernet."""

    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value:
            return _encrypt(value)
        return value

    def process_result_value(self, value, dialect):
        if value:
            return _decrypt(value)
        return value


class EncryptedJSON(TypeDecorator):
    """JSON document serialised, then encrypted as a single Fernet token.

    Assign a new object to change the value; in-place mutation is not tracked.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return _encrypt(json.dumps(value))

    def process_result_value(self, value, dialect):
        if not value:
            return None
        try:
            return json.loads(_decrypt(value))
        except json.JSONDecodeError:
            logger.warning("Unreadable encrypted JSON column value, treating as empty")
            return None
