"""In-memory token-bucket rate limiting for the public OAuth endpoints.

Each endpoint family gets its own limiter keyed by client IP:

  - authorize:    consent page + decision
  - token:        code / refresh exchange
  - registration: dynamic client registration

Capacity comes from ``Settings.auth_rate_per_minute`` (burst = one minute's
allowance, refilled continuously).
"""

from __future__ import annotations

import math
import time

__all__ = [
    "RateLimiter",
    "RateLimitInfo",
    "get_limiter_for_path",
    "reset_limiters",
]


class _Bucket:
    __slots__ = ("tokens", "last_refill")

    def __init__(self, capacity: float, now: float):
        self.tokens: float = capacity
        self.last_refill: float = now


class RateLimitInfo:
    """Outcome of ``RateLimiter.check()``."""

    __slots__ = ("allowed", "limit", "remaining", "reset_after")

    def __init__(self, allowed: bool, limit: int, remaining: int, reset_after: float):
        self.allowed = allowed
        self.limit = limit
        self.remaining = remaining
        self.reset_after = reset_after

    def headers(self) -> dict[str, str]:
        h = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if not self.allowed:
            h["Retry-After"] = str(max(1, math.ceil(self.reset_after)))
        return h


class RateLimiter:
    """Token bucket per key: *rate* tokens/second, bursts up to *capacity*."""

    def __init__(self, rate: float, capacity: int):
        self.rate = rate
        self.capacity = capacity
        self._buckets: dict[str, _Bucket] = {}

    def check(self, key: str) -> RateLimitInfo:
        now = time.monotonic()
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = self._buckets[key] = _Bucket(self.capacity, now)

        bucket.tokens = min(self.capacity, bucket.tokens + (now - bucket.last_refill) * self.rate)
        bucket.last_refill = now

        if bucket.tokens >= 1.0:
            bucket.tokens -= 1.0
            return RateLimitInfo(True, self.capacity, int(bucket.tokens), 0.0)

        reset_after = (1.0 - bucket.tokens) / self.rate if self.rate > 0 else 60.0
        return RateLimitInfo(False, self.capacity, 0, reset_after)

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def cleanup(self, max_age: float = 3600.0) -> int:
        """Drop buckets idle for more than *max_age* seconds."""
        now = time.monotonic()
        stale = [k for k, b in self._buckets.items() if now - b.last_refill > max_age]
        for k in stale:
            del self._buckets[k]
        return len(stale)


_PATH_TIERS = {
    "/oauth/authorize": "authorize",
    "/oauth/token": "token",
    "/oauth/register": "registration",
}
_limiters: dict[str, RateLimiter] = {}


def _new_limiter() -> RateLimiter:
    from mcphub.config import Settings

    per_minute = max(1, Settings.load().auth_rate_per_minute)
    return RateLimiter(rate=per_minute / 60.0, capacity=per_minute)


def get_limiter_for_path(path: str) -> RateLimiter | None:
    """Return the limiter guarding *path*, or None for unlimited paths."""
    for prefix, tier in _PATH_TIERS.items():
        if path == prefix or path.startswith(prefix + "/"):
            if tier not in _limiters:
                _limiters[tier] = _new_limiter()
            return _limiters[tier]
    return None


def reset_limiters() -> None:
    """Forget all buckets (for testing)."""
    _limiters.clear()
