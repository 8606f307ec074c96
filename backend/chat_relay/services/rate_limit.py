"""
Fixed-window inbound rate limiter keyed by caller.
"""
import time
from typing import Callable, Dict, Tuple


class RateLimiter:
    """Allow at most ``limit`` hits per ``window`` seconds for each key."""

    def __init__(self, limit: int, window: float, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window = window
        self._clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}

    def hit(self, key: str) -> Tuple[bool, float]:
        """Record one request; return (allowed, seconds until the window resets)."""
        now = self._clock()
        started, count = self._windows.get(key, (now, 0))
        if now - started >= self.window:
            started, count = now, 0
        count += 1
        self._windows[key] = (started, count)
        retry_after = max(0.0, self.window - (now - started))
        if len(self._windows) > 10_000:
            self._evict(now)
        return count <= self.limit, retry_after

    def _evict(self, now: float) -> None:
        expired = [k for k, (started, _) in self._windows.items() if now - started >= self.window]
        for k in expired:
            del self._windows[k]

    def reset(self) -> None:
        self._windows.clear()
