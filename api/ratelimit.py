from __future__ import annotations

from collections import deque
import logging
import threading
import time
from typing import Callable

from fastapi import HTTPException, Request

from .deps import client_ip

logger = logging.getLogger(__name__)


class SlidingWindowLimiter:
    """In-process per-key request limiter over a trailing time window.

    Keys whose newest hit has left the window are swept at most once per
    window, so idle clients do not accumulate.
    """

    def __init__(self, name: str, max_requests: int, window_s: float = 60.0) -> None:
        self.name = name
        self.max_requests = max_requests
        self.window_s = window_s
        self._hits: dict[str, deque[float]] = {}
        self._last_sweep = 0.0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._hits)

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self.window_s:
            return
        self._last_sweep = now
        cutoff = now - self.window_s
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]
        if stale:
            logger.debug("Rate limiter %s: evicted %d idle keys", self.name, len(stale))

    def hit(self, key: str, now: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        with self._lock:
            self._sweep(now)
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= now - self.window_s:
                hits.popleft()
            if len(hits) >= self.max_requests:
                return False
            hits.append(now)
            return True

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._last_sweep = 0.0


track_limiter = SlidingWindowLimiter("track", max_requests=120)
subscribe_limiter = SlidingWindowLimiter("subscribe", max_requests=10)


def rate_limit(limiter: SlidingWindowLimiter) -> Callable[[Request], None]:
    def dependency(request: Request) -> None:
        key = client_ip(request) or "unknown"
        if not limiter.hit(key):
            logger.warning("Rate limit exceeded for %s on %s", key, limiter.name)
            raise HTTPException(status_code=429, detail="Too many requests")

    return dependency
