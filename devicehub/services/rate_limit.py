"""Redis-backed rate limiting and failed-attempt lockout."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import redis as redis_lib

from config import settings

logger = logging.getLogger(__name__)


def _redis() -> redis_lib.Redis:
    return redis_lib.from_url(settings.REDIS_URL, decode_responses=True)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime | None = None


@dataclass
class LockoutStatus:
    is_locked: bool
    attempts_remaining: int
    locked_until: datetime | None = None


class RateLimiter:
    """Fixed-window counters and consecutive-failure lockouts.

    Keys:
      ``ratelimit:{key}``          request counter for the current window
      ``lockout:failures:{id}``    consecutive failures
      ``lockout:locked:{id}``      present while the identifier is locked

    Redis errors fail open: the request is allowed and a warning is logged.
    """

    def __init__(
        self,
        r: redis_lib.Redis | None = None,
        lockout_threshold: int | None = None,
        lockout_seconds: int | None = None,
    ):
        self._r = r
        self.lockout_threshold = lockout_threshold or settings.MFA_LOCKOUT_THRESHOLD
        self.lockout_seconds = lockout_seconds or settings.MFA_LOCKOUT_SECONDS

    @property
    def r(self) -> redis_lib.Redis:
        if self._r is None:
            self._r = _redis()
        return self._r

    # ── Request rate ─────────────────────────────────────────────────────

    def check(self, key: str, max_requests: int, window_seconds: int) -> RateLimitResult:
        """Count one request against *key* and report whether it is allowed."""
        rate_key = f"ratelimit:{key}"
        try:
            pipe = self.r.pipeline()
            pipe.incr(rate_key)
            pipe.ttl(rate_key)
            count, ttl = pipe.execute()
            # -1: counter exists without expiry, i.e. this request opened the window
            if ttl is None or ttl < 0:
                self.r.expire(rate_key, window_seconds)
                ttl = window_seconds
        except redis_lib.RedisError:
            logger.warning("Rate limit check failed for %s, allowing request", key, exc_info=True)
            return RateLimitResult(allowed=True, remaining=max_requests)

        return RateLimitResult(
            allowed=int(count) <= max_requests,
            remaining=max(max_requests - int(count), 0),
            reset_at=_utcnow() + timedelta(seconds=ttl),
        )

    # ── Lockout ──────────────────────────────────────────────────────────

    def is_locked(self, identifier: str) -> datetime | None:
        """Return when the lock on *identifier* expires, or None if not locked."""
        try:
            ttl = self.r.ttl(f"lockout:locked:{identifier}")
        except redis_lib.RedisError:
            logger.warning("Lockout check failed for %s", identifier, exc_info=True)
            return None
        if ttl is None or ttl < 0:
            return None
        return _utcnow() + timedelta(seconds=ttl)

    def record_failure(self, identifier: str) -> LockoutStatus:
        failure_key = f"lockout:failures:{identifier}"
        try:
            pipe = self.r.pipeline()
            pipe.incr(failure_key)
            pipe.expire(failure_key, self.lockout_seconds)
            failures = int(pipe.execute()[0])

            if failures >= self.lockout_threshold:
                self.r.setex(f"lockout:locked:{identifier}", self.lockout_seconds, "1")
                self.r.delete(failure_key)
                logger.warning("Locked %s after %d consecutive failures", identifier, failures)
                return LockoutStatus(
                    is_locked=True,
                    attempts_remaining=0,
                    locked_until=_utcnow() + timedelta(seconds=self.lockout_seconds),
                )
        except redis_lib.RedisError:
            logger.warning("Failed to record failure for %s", identifier, exc_info=True)
            return LockoutStatus(is_locked=False, attempts_remaining=self.lockout_threshold)

        return LockoutStatus(is_locked=False, attempts_remaining=self.lockout_threshold - failures)

    def clear_failures(self, identifier: str) -> None:
        try:
            self.r.delete(f"lockout:failures:{identifier}")
        except redis_lib.RedisError:
            logger.warning("Failed to clear failures for %s", identifier, exc_info=True)


def get_rate_limiter() -> RateLimiter:
    """FastAPI dependency; tests override it with a fakeredis-backed limiter."""
    return RateLimiter()
