"""Fixed-window rate limiter keyed by caller identity.

Each key gets ``max_requests`` calls per window. The window starts on the
first call after the previous one expired. Expired records are purged on
access; there is no background sweep.

State is process-local. Several gateway instances behind a load balancer
each count separately; a global limit needs an external shared counter.

Thread-safe via threading.Lock (the critical section never awaits, so it
is also safe to call from coroutines).
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class RateLimitRecord:
    """Counter for a single caller key."""

    key: str
    count: int
    window_reset_at: float  # clock() value at which the window expires


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a single check."""

    allowed: bool
    remaining: int
    retry_after: int = 0  # seconds until the window resets (only when denied)


class FixedWindowRateLimiter:
    """Per-key fixed window counter.

    Usage:
        limiter = FixedWindowRateLimiter(max_requests=20, window_seconds=60)

        decision = limiter.check(f"ai-stream:{client_ip}")
        if not decision.allowed:
            # respond 429 with Retry-After: decision.retry_after
            ...
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._records: dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()

    def _purge_expired(self, now: float) -> None:
        expired = [k for k, r in self._records.items() if now > r.window_reset_at]
        for key in expired:
            del self._records[key]

    def check(self, key: str) -> RateLimitDecision:
        """Count one request for *key* and decide whether it may proceed."""
        with self._lock:
            now = self._clock()
            self._purge_expired(now)

            # Expired records were just purged, so a missing record means a fresh window
            record = self._records.get(key)
            if record is None:
                record = RateLimitRecord(key=key, count=0, window_reset_at=now + self.window_seconds)
                self._records[key] = record

            if record.count >= self.max_requests:
                retry_after = max(1, math.ceil(record.window_reset_at - now))
                logger.info("Rate limit hit for %s, retry in %ds", key, retry_after)
                return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after)

            record.count += 1
            return RateLimitDecision(allowed=True, remaining=self.max_requests - record.count)

    def remaining(self, key: str) -> int:
        """Requests left for *key* in its current window (without consuming one)."""
        with self._lock:
            record = self._records.get(key)
            if record is None or self._clock() > record.window_reset_at:
                return self.max_requests
            return max(0, self.max_requests - record.count)

    def reset(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def get_stats(self) -> dict:
        """Current limiter state (tracked keys only, no per-key detail)."""
        with self._lock:
            self._purge_expired(self._clock())
            return {
                "tracked_keys": len(self._records),
                "max_requests": self.max_requests,
                "window_seconds": self.window_seconds,
            }
