"""Per-client request throttling for login, password-reset and inquiry endpoints.

Each key keeps the timestamps of its accepted requests. A request is let
through while fewer than `limit` of them fall inside the trailing
`window` seconds, so capacity comes back one hit at a time as old ones
age out rather than all at once on a boundary.
"""

from __future__ import annotations

import math
import os
import threading
import time
from collections import deque
from typing import Callable, Dict, Deque, Tuple

from fastapi import HTTPException, Request


class SlidingWindowLimiter:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._log: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def _recent(self, key: str, since: float) -> Deque[float]:
        stamps = self._log.setdefault(key, deque())
        while stamps and stamps[0] <= since:
            stamps.popleft()
        return stamps

    def allow(self, key: str, limit: int, window: int) -> Tuple[bool, int]:
        """Record a hit for `key` if it fits; otherwise return the seconds until one will."""
        now = self._clock()
        with self._lock:
            stamps = self._recent(key, now - window)
            if len(stamps) >= limit:
                return False, max(1, math.ceil(stamps[0] + window - now))
            stamps.append(now)
        return True, 0

    def reset(self) -> None:
        with self._lock:
            self._log.clear()


auth_limiter = SlidingWindowLimiter()


def enforce_rate_limit(request: Request, limiter: SlidingWindowLimiter = auth_limiter) -> None:
    """Raise 429 with `Retry-After` once the client exceeds its quota for this path."""
    limit = int(os.getenv("AUTH_RATE_LIMIT_PER_MIN", "20"))
    window = int(os.getenv("AUTH_RATE_LIMIT_WINDOW_SECONDS", "60"))
    client = request.client.host if request.client else "unknown"
    allowed, retry_after = limiter.allow(f"{client}:{request.url.path}", limit, window)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"rate limit exceeded; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )
