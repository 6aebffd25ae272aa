"""In-memory sliding-window rate limiting for the auth endpoints."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Deque, Dict


class InMemoryRateLimiter:
    """Sliding-window limiter suitable for single-node deployments."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._hits: Dict[str, Deque[float]] = {}

    def _window(self, key: str, window_seconds: int, now: float) -> Deque[float]:
        hits = self._hits.setdefault(key, deque())
        cutoff = now - window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        return hits

    def allow(self, key: str, limit: int, window_seconds: int) -> bool:
        """Record a hit for ``key`` unless it already used ``limit`` hits in the window."""
        now = self._clock()
        with self._lock:
            hits = self._window(key, window_seconds, now)
            if len(hits) >= limit:
                return False
            hits.append(now)
            return True

    def retry_after(self, key: str, window_seconds: int) -> int:
        """Seconds until the oldest hit for ``key`` leaves the window."""
        now = self._clock()
        with self._lock:
            hits = self._window(key, window_seconds, now)
            if not hits:
                return 0
            return max(1, int(hits[0] + window_seconds - now))

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


rate_limiter = InMemoryRateLimiter()
