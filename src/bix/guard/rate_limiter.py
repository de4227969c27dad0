"""Fixed-window rate limiting and failed-attempt lockout.

The limiter is a capability created once per process (see bix.main) and
injected into the engine. InMemoryRateLimiter keeps counters in this process
only, so horizontally scaled instances each enforce their own limits.
RedisRateLimiter shares the counters through Redis.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from bix.config import Settings

FAILED_ATTEMPT_WINDOW_SECONDS = 3600
DEFAULT_LOCKOUT_THRESHOLD = 10
PRUNE_INTERVAL_SECONDS = 60


class RateLimiter(Protocol):
    """Per-key fixed-window counters. No cross-key ordering guarantees."""

    async def check_rate_limit(self, key: str, max_per_window: int, window_seconds: int = 60) -> bool: ...

    async def track_failed_attempt(self, key: str) -> int: ...

    async def is_locked_out(self, key: str) -> bool: ...


@dataclass(slots=True)
class _Window:
    count: int
    reset_at: float


class InMemoryRateLimiter:
    """Process-local limiter.

    Windows reset lazily on the first check after expiry; expired keys are
    pruned at most once a minute so one-off callers do not accumulate.
    """

    def __init__(
        self,
        *,
        lockout_threshold: int = DEFAULT_LOCKOUT_THRESHOLD,
        failure_window_seconds: int = FAILED_ATTEMPT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.lockout_threshold = lockout_threshold
        self.failure_window_seconds = failure_window_seconds
        self._clock = clock
        self._rate_limits: dict[str, _Window] = {}
        self._failed_attempts: dict[str, _Window] = {}
        self._next_prune = clock() + PRUNE_INTERVAL_SECONDS

    def _prune(self, now: float) -> None:
        """Drop expired windows, at most once per PRUNE_INTERVAL_SECONDS."""
        if now < self._next_prune:
            return
        self._next_prune = now + PRUNE_INTERVAL_SECONDS
        for counters in (self._rate_limits, self._failed_attempts):
            for key in [k for k, entry in counters.items() if now > entry.reset_at]:
                del counters[key]

    async def check_rate_limit(self, key: str, max_per_window: int, window_seconds: int = 60) -> bool:
        """Allow and count the hit, or deny once the window already holds max_per_window hits."""
        now = self._clock()
        self._prune(now)
        entry = self._rate_limits.get(key)
        if entry is None or now > entry.reset_at:
            self._rate_limits[key] = _Window(count=1, reset_at=now + window_seconds)
            return True
        if entry.count >= max_per_window:
            return False
        entry.count += 1
        return True

    async def track_failed_attempt(self, key: str) -> int:
        """Record a failure and return the count inside the current window."""
        now = self._clock()
        self._prune(now)
        entry = self._failed_attempts.get(key)
        if entry is None or now > entry.reset_at:
            self._failed_attempts[key] = _Window(count=1, reset_at=now + self.failure_window_seconds)
            return 1
        entry.count += 1
        return entry.count

    async def is_locked_out(self, key: str) -> bool:
        entry = self._failed_attempts.get(key)
        if entry is None:
            return False
        if self._clock() > entry.reset_at:
            del self._failed_attempts[key]
            return False
        return entry.count >= self.lockout_threshold


class RedisRateLimiter:
    """Limiter backed by Redis INCR/EXPIRE, shared by every API instance."""

    def __init__(
        self,
        redis_factory: Callable[[], Any],
        *,
        lockout_threshold: int = DEFAULT_LOCKOUT_THRESHOLD,
        failure_window_seconds: int = FAILED_ATTEMPT_WINDOW_SECONDS,
        prefix: str = "bix",
    ) -> None:
        self._redis_factory = redis_factory
        self.lockout_threshold = lockout_threshold
        self.failure_window_seconds = failure_window_seconds
        self.prefix = prefix

    async def _incr(self, key: str, window_seconds: int) -> int:
        pipe = self._redis_factory().pipeline()
        pipe.incr(key)
        pipe.expire(key, window_seconds, nx=True)
        results: list[Any] = await pipe.execute()
        return int(results[0])

    async def check_rate_limit(self, key: str, max_per_window: int, window_seconds: int = 60) -> bool:
        count = await self._incr(f"{self.prefix}:ratelimit:{key}", window_seconds)
        return count <= max_per_window

    async def track_failed_attempt(self, key: str) -> int:
        return await self._incr(f"{self.prefix}:failed:{key}", self.failure_window_seconds)

    async def is_locked_out(self, key: str) -> bool:
        raw = await self._redis_factory().get(f"{self.prefix}:failed:{key}")
        return raw is not None and int(raw) >= self.lockout_threshold


def build_rate_limiter(settings: Settings) -> RateLimiter:
    """Create the process-wide limiter selected by BIX_RATE_LIMIT_BACKEND."""
    if settings.rate_limit_backend == "redis":
        from bix.redis_client import get_redis

        return RedisRateLimiter(
            get_redis,
            lockout_threshold=settings.lockout_threshold,
            failure_window_seconds=settings.lockout_window_seconds,
        )
    return InMemoryRateLimiter(
        lockout_threshold=settings.lockout_threshold,
        failure_window_seconds=settings.lockout_window_seconds,
    )
