"""
Fixed-window request limiter keyed by (client, route).

Single-process only: buckets live in this process's memory and are lost on
restart, which degrades to a full quota. A shared counter store can sit
behind the same ``check`` signature for multi-instance deployments.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

PRUNE_INTERVAL_MS = 60_000


@dataclass
class RateBucket:
    remaining: int
    reset_at_ms: float


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of one ``check``; carries the response header metadata."""

    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: float
    retry_after: Optional[int] = None

    @property
    def reset_epoch_seconds(self) -> int:
        return int(self.reset_at_ms // 1000)

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_epoch_seconds),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


def _now_ms() -> float:
    return time.time() * 1000


class FixedWindowRateLimiter:
    """
    In-memory fixed-window counter. Key -> (remaining, window reset).

    Elapsed buckets are swept from inside ``check`` at most once per
    ``prune_interval_ms``, so the map stays bounded without a scan per request.
    """

    def __init__(
        self,
        clock_ms: Optional[Callable[[], float]] = None,
        prune_interval_ms: float = PRUNE_INTERVAL_MS,
    ):
        self._clock_ms = clock_ms or _now_ms
        self._buckets: Dict[str, RateBucket] = {}
        self._lock = threading.Lock()
        self._prune_interval_ms = prune_interval_ms
        self._next_prune_ms = self._clock_ms() + prune_interval_ms

    def check(self, key: str, window_ms: int, max_requests: int) -> RateLimitDecision:
        """Count one request against ``key`` and decide whether it may proceed."""
        now = self._clock_ms()
        with self._lock:
            if now >= self._next_prune_ms:
                self._prune_locked(now)
            bucket = self._buckets.get(key)
            if bucket is None or now >= bucket.reset_at_ms:
                bucket = RateBucket(remaining=max_requests - 1, reset_at_ms=now + window_ms)
                self._buckets[key] = bucket
                return RateLimitDecision(True, max_requests, bucket.remaining, bucket.reset_at_ms)

            if bucket.remaining <= 0:
                retry_after = max(1, math.ceil((bucket.reset_at_ms - now) / 1000))
                return RateLimitDecision(False, max_requests, 0, bucket.reset_at_ms, retry_after)

            bucket.remaining -= 1
            return RateLimitDecision(True, max_requests, bucket.remaining, bucket.reset_at_ms)

    def prune(self) -> int:
        """Drop buckets whose window has elapsed to avoid unbounded growth."""
        with self._lock:
            return self._prune_locked(self._clock_ms())

    def _prune_locked(self, now: float) -> int:
        stale = [key for key, bucket in self._buckets.items() if now >= bucket.reset_at_ms]
        for key in stale:
            del self._buckets[key]
        self._next_prune_ms = now + self._prune_interval_ms
        return len(stale)

    def __len__(self) -> int:
        return len(self._buckets)

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


# Module-level limiter (single process)
_limiter: Optional[FixedWindowRateLimiter] = None


def get_rate_limiter() -> FixedWindowRateLimiter:
    global _limiter
    if _limiter is None:
        _limiter = FixedWindowRateLimiter()
    return _limiter
