"""In-memory sliding window rate limiter applied in front of the login endpoint."""

from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Deque, DefaultDict


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    """Result of one limiter check, also used to fill the ``X-RateLimit-*`` headers."""

    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0


class SlidingWindowRateLimiter:
    """Thread-safe sliding window rate limiter."""

    def __init__(self, max_requests: int, window_seconds: int) -> None:
        """Initialise limiter parameters and per-key storage."""
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be at least 1")
        self._max_requests = max_requests
        self._window = window_seconds
        self._events: DefaultDict[str, Deque[float]] = DefaultDict(deque)
        self._lock = Lock()

    def check(self, key: str) -> RateLimitDecision:
        """Record a request for ``key`` unless the window is already full."""
        now = time.time()
        with self._lock:
            queue = self._events[key]
            while queue and now - queue[0] > self._window:
                queue.popleft()
            if len(queue) >= self._max_requests:
                retry_after = max(1, math.ceil(self._window - (now - queue[0])))
                return RateLimitDecision(False, self._max_requests, 0, retry_after)
            queue.append(now)
            return RateLimitDecision(True, self._max_requests, self._max_requests - len(queue))

    def allow(self, key: str) -> bool:
        """Return ``True`` when the request is within the configured rate limit."""
        return self.check(key).allowed
