"""In-memory rate limiter for completion submissions."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Dict, Tuple

from ..errors import RateLimitError


class InMemoryRateLimiter:
    """Sliding-window limiter keyed by caller (e.g. user id + action).

    A key whose hits have all aged out is dropped, so only callers active
    within their window hold memory.
    """

    def __init__(self, monotonic: Callable[[], float] = time.monotonic):
        self._monotonic = monotonic
        self._hits: Dict[str, deque] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._hits)

    def _prune(self, now: float, window_seconds: int) -> None:
        cutoff = now - window_seconds
        for key in list(self._hits):
            hits = self._hits[key]
            while hits and hits[0] < cutoff:
                hits.popleft()
            if not hits:
                del self._hits[key]

    def allow(self, key: str, max_requests: int, window_seconds: int) -> Tuple[bool, int]:
        """Record a hit for `key` if under `max_requests`; return `(allowed, retry_after)`."""
        now = self._monotonic()
        with self._lock:
            self._prune(now, window_seconds)
            hits = self._hits.setdefault(key, deque())
            if len(hits) >= max_requests:
                oldest = hits[0] if hits else now
                return False, max(1, int(window_seconds - (now - oldest)))
            hits.append(now)
        return True, 0

    def check(self, key: str, max_requests: int, window_seconds: int = 60) -> None:
        """Record a hit for `key` or raise `RateLimitError` when over the limit."""
        allowed, retry_after = self.allow(key, max_requests, window_seconds)
        if not allowed:
            raise RateLimitError(max_requests, window_seconds, retry_after)
