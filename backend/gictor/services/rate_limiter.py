"""In-memory fixed-window rate limiter.

Cloud Run instances are stateless, so limits are enforced per instance only.
A shared backend (Redis/DB) would be needed for a global limit.
"""

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass
class Window:
    started_at: float
    count: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int  # seconds until the window resets; 0 when allowed


class FixedWindowRateLimiter:
    """Thread-safe per-principal request counter with a fixed window."""

    def __init__(
        self,
        limit: int = 50,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 1 or window_seconds < 1:
            raise ValueError("limit and window_seconds must be positive")
        self._limit = limit
        self._window = window_seconds
        self._clock = clock
        self._store: dict[str, Window] = {}
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    def check(self, principal: str) -> RateLimitDecision:
        """Count one request for `principal` and decide whether it may proceed.

        A refused request is not counted. The window starts at the first
        request after the previous window expired.
        """
        with self._lock:
            now = self._clock()
            self._cleanup_expired(now)

            window = self._store.get(principal)
            if window is None:
                window = Window(started_at=now, count=0)
                self._store[principal] = window

            if window.count >= self._limit:
                reset_in = window.started_at + self._window - now
                return RateLimitDecision(allowed=False, remaining=0, retry_after=max(1, math.ceil(reset_in)))

            window.count += 1
            return RateLimitDecision(allowed=True, remaining=self._limit - window.count, retry_after=0)

    def reset(self, principal: str | None = None) -> None:
        with self._lock:
            if principal is None:
                self._store.clear()
            else:
                self._store.pop(principal, None)

    def _cleanup_expired(self, now: float) -> None:
        """Remove expired windows (called under lock)."""
        expired = [k for k, v in self._store.items() if now - v.started_at >= self._window]
        for k in expired:
            del self._store[k]
