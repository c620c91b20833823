"""TOTP primitives: secrets, backup codes, code derivation and verification.

Codes follow RFC 6238 (HMAC-SHA1, 30 second steps, 6 digits) so any
standard authenticator app can be enrolled from ``build_otpauth_uri``.
Everything here is a pure function of its arguments and the clock.
"""

from __future__ import annotations

import base64
import hmac
import math
import re
import secrets
import time as _time
from urllib.parse import quote

import pyotp

BASE32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"

SECRET_BYTES = 20  # 160 bits, the RFC 4226 recommended key length
CODE_DIGITS = 6
DEFAULT_TIME_STEP = 30
BACKUP_CODE_COUNT = 10
BACKUP_CODE_LENGTH = 8

_NON_BASE32 = re.compile(r"[^A-Z2-7]")
_CODE_RE = re.compile(r"[0-9]{%d}" % CODE_DIGITS)

# JavaScript encodeURIComponent leaves these unescaped on top of quote()'s defaults
_URI_COMPONENT_SAFE = "!'()*"


# ---------------------------------------------------------------------------
# Base32 codec
# ---------------------------------------------------------------------------


def base32_encode(data: bytes) -> str:
    """RFC 4648 base32 without ``=`` padding."""
    return base64.b32encode(data).decode("ascii").rstrip("=")


def base32_decode(text: str) -> bytes:
    """Lenient base32 decode.

    Case is folded, anything outside ``A-Z2-7`` is dropped (spaces, dashes,
    padding) and trailing bits that do not make up a whole byte are ignored.
    Never raises for string input.
    """
    clean = _NON_BASE32.sub("", text.upper())
    n_bytes = len(clean) * 5 // 8
    clean = clean[: math.ceil(n_bytes * 8 / 5)]
    if not clean:
        return b""
    clean += "=" * (-len(clean) % 8)
    return base64.b32decode(clean)


# ---------------------------------------------------------------------------
# Enrollment material
# ---------------------------------------------------------------------------


def generate_secret() -> str:
    """Return a new 160-bit shared secret, base32 encoded (32 characters)."""
    return base32_encode(secrets.token_bytes(SECRET_BYTES))


def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> list[str]:
    """Return *count* distinct single-use recovery codes.

    Each code is 4 random bytes rendered as 8 upper-case hex characters.
    """
    codes: list[str] = []
    while len(codes) < count:
        code = secrets.token_bytes(4).hex().upper()[:BACKUP_CODE_LENGTH]
        if code not in codes:
            codes.append(code)
    return codes


# ---------------------------------------------------------------------------
# Code derivation / verification
# ---------------------------------------------------------------------------


def time_counter(time_step_seconds: int = DEFAULT_TIME_STEP, for_time: float | None = None) -> int:
    """Number of whole time steps elapsed since the Unix epoch."""
    now = _time.time() if for_time is None else for_time
    return math.floor(now / time_step_seconds)


def compute_code(
    secret: str,
    time_step_seconds: int = DEFAULT_TIME_STEP,
    step_offset: int = 0,
    for_time: float | None = None,
) -> str:
    """Return the 6-digit code for *secret* at the current (or given) time step.

    *step_offset* shifts the counter by whole steps, e.g. ``-1`` for the code
    that was valid one step ago.
    """
    counter = time_counter(time_step_seconds, for_time) + step_offset
    if counter < 0:
        raise ValueError("time step counter must not be negative")
    # pyotp wants a canonical base32 string; round-trip through the lenient decoder
    canonical = base32_encode(base32_decode(secret))
    return pyotp.HOTP(canonical, digits=CODE_DIGITS).at(counter)


def is_code_format(code: object) -> bool:
    """True when *code* is a string of exactly six ASCII digits."""
    return isinstance(code, str) and _CODE_RE.fullmatch(code) is not None


def verify_code(
    secret: str,
    submitted_code: str,
    window: int = 1,
    time_step_seconds: int = DEFAULT_TIME_STEP,
    for_time: float | None = None,
) -> bool:
    """Check *submitted_code* against the steps ``-window .. +window`` around now."""
    if not is_code_format(submitted_code):
        return False

    current = time_counter(time_step_seconds, for_time)
    for offset in range(-window, window + 1):
        if current + offset < 0:
            continue
        expected = compute_code(secret, time_step_seconds, offset, for_time)
        if hmac.compare_digest(expected, submitted_code):
            return True
    return False


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------


def build_otpauth_uri(
    secret: str,
    account: str,
    issuer: str,
    time_step_seconds: int = DEFAULT_TIME_STEP,
) -> str:
    """Return the ``otpauth://`` URI authenticator apps scan from a QR code."""
    enc_issuer = quote(issuer, safe=_URI_COMPONENT_SAFE)
    enc_account = quote(account, safe=_URI_COMPONENT_SAFE)
    return (
        f"otpauth://totp/{enc_issuer}:{enc_account}"
        f"?secret={secret}&issuer={enc_issuer}"
        f"&algorithm=SHA1&digits={CODE_DIGITS}&period={time_step_seconds}"
    )
