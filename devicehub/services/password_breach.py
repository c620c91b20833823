"""Known-breach password check against the Pwned Passwords range API.

Only the first five hex characters of the password's SHA-1 are sent; the
matching suffixes come back and are compared locally. Any failure (network,
HTTP status, malformed body) reports the password as not breached.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass

import httpx

from config import settings

logger = logging.getLogger(__name__)


@dataclass
class BreachResult:
    breached: bool = False
    count: int = 0


def _sha1_hex(password: str) -> str:
    return hashlib.sha1(password.encode("utf-8")).hexdigest().upper()


def _find_suffix(body: str, suffix: str) -> int:
    """Return the breach count for *suffix* in a range response, 0 if absent."""
    for line in body.splitlines():
        hash_suffix, _, count = line.partition(":")
        if hash_suffix.strip().upper() == suffix:
            try:
                return int(count.strip())
            except ValueError:
                return 0
    return 0


def check_password_breach(password: str, client: httpx.Client | None = None) -> BreachResult:
    digest = _sha1_hex(password)
    prefix, suffix = digest[:5], digest[5:]

    owns_client = client is None
    if owns_client:
        client = httpx.Client(timeout=settings.PASSWORD_BREACH_TIMEOUT_SECONDS)
    try:
        resp = client.get(f"{settings.PASSWORD_BREACH_API_URL}{prefix}", headers={"Add-Padding": "true"})
        resp.raise_for_status()
    except httpx.HTTPError:
        logger.warning("Password breach lookup failed, treating as not breached", exc_info=True)
        return BreachResult()
    finally:
        if owns_client:
            client.close()

    count = _find_suffix(resp.text, suffix)
    # padded responses carry fake suffixes with a count of 0
    return BreachResult(breached=count > 0, count=count)
