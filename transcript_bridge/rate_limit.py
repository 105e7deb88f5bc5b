"""
Sliding-window rate limiting for the manual trigger endpoints.

Each of those endpoints causes outbound calls to the meeting data API or
the issue tracker, so they share one per-process budget. The webhook is
never limited.
"""

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional


@dataclass
class RateLimitResult:
    """Outcome of one rate limit check."""
    allowed: bool
    remaining: int
    retry_after: Optional[float] = None


class SlidingWindowLimiter:
    """
    At most `limit` hits per key within any `window_seconds` span.

    Thread-safe.
    """

    def __init__(self, limit: int, window_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self._limit = max(1, limit)
        self._window = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    def hit(self, key: str = "manual") -> RateLimitResult:
        """Record a hit for `key` if the window allows it."""
        now = self._clock()
        horizon = now - self._window

        with self._lock:
            hits = self._hits[key]
            while hits and hits[0] <= horizon:
                hits.popleft()

            if len(hits) >= self._limit:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    retry_after=max(0.0, hits[0] + self._window - now),
                )

            hits.append(now)
            return RateLimitResult(allowed=True, remaining=self._limit - len(hits))

    def allow(self, key: str = "manual") -> bool:
        return self.hit(key).allowed

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)
