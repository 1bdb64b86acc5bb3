"""Sliding-window limiter for login attempts, kept in process memory."""

from __future__ import annotations

import math
import time
from collections import defaultdict, deque

from fastapi import HTTPException, status


class InMemoryRateLimiter:
    """Allow at most *max_attempts* hits per key within *window_seconds*.

    Each station terminal logs in from its own address, so the login
    endpoint keys on client IP. State is per process.
    """

    def __init__(self, window_seconds: int = 60, max_attempts: int = 5) -> None:
        self.window_seconds = window_seconds
        self.max_attempts = max_attempts
        self._hits: dict[str, deque[float]] = defaultdict(deque)

    def _prune(self, key: str, now: float) -> deque[float]:
        hits = self._hits[key]
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()
        return hits

    def retry_after(self, key: str) -> int:
        """Seconds until *key* may try again (0 when it may try now)."""
        now = time.monotonic()
        hits = self._prune(key, now)
        if len(hits) < self.max_attempts:
            return 0
        return max(1, math.ceil(self.window_seconds - (now - hits[0])))

    def check(self, key: str) -> None:
        """Record a hit for *key*, or raise 429 with ``Retry-After`` when over the limit."""
        wait = self.retry_after(key)
        if wait:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Too many attempts. Try again in {wait} seconds.",
                headers={"Retry-After": str(wait)},
            )
        self._hits[key].append(time.monotonic())

    def reset(self) -> None:
        self._hits.clear()
