# Overview: In-memory sliding-window rate limiter for the public function endpoints.

from __future__ import annotations

import threading
import time
from collections import deque


class RateLimiter:
    """
    Per-key sliding window: at most max_requests per window_seconds.

    State is per process; multiple workers each enforce their own window.
    Keys whose window has emptied are dropped, so idle clients cost nothing.
    """

    def __init__(self, max_requests: int, window_seconds: float, clock=time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        now = self._clock()
        cutoff = now - self.window_seconds
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(cutoff)
                self._last_sweep = now

            hits = self._hits.get(key)
            if hits is not None:
                self._prune(hits, cutoff)
            if hits and len(hits) >= self.max_requests:
                return False
            if not hits:
                hits = self._hits[key] = deque()
            hits.append(now)
            return True

    @staticmethod
    def _prune(hits: deque, cutoff: float) -> None:
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def _sweep(self, cutoff: float) -> None:
        for key in list(self._hits):
            hits = self._hits[key]
            self._prune(hits, cutoff)
            if not hits:
                del self._hits[key]

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
