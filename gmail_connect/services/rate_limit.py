"""Fixed-window request rate limiting keyed by caller address."""
from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_after: float


class FixedWindowRateLimiter:
    """Allow ``limit`` hits per key in each ``window_seconds`` window.

    Each key's window starts at its first hit and resets once it has
    elapsed. State lives in process memory.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if limit <= 0 or window_seconds <= 0:
            raise ValueError("limit and window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> RateLimitDecision:
        """Record one request for ``key`` and report whether it is allowed."""
        now = self._clock()
        with self._lock:
            self._evict_expired(now)
            started, count = self._windows.get(key, (now, 0))
            count += 1
            self._windows[key] = (started, count)

        reset_after = max(0.0, started + self.window_seconds - now)
        return RateLimitDecision(
            allowed=count <= self.limit,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset_after=reset_after,
        )

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _evict_expired(self, now: float) -> None:
        expired = [
            key
            for key, (started, _) in self._windows.items()
            if now - started >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]


def retry_after_seconds(decision: RateLimitDecision) -> int:
    return max(1, math.ceil(decision.reset_after))
