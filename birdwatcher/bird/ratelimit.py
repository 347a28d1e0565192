"""
Backend rate limiting: a fixed budget of uncached `birdc` invocations per
minute. Cached answers never count against the budget.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

from birdwatcher.config import RateLimitConfig

_WINDOW = 60.0  # seconds


class RateLimiter:
    """
    Counts backend queries in the current one-minute window.

    The counter resets when a window has elapsed, the same effect as a
    periodic reset job without needing a background thread.
    """

    def __init__(self, config: RateLimitConfig, clock: Callable[[], float] = time.monotonic):
        self.config = config
        self._clock = clock
        self._lock = threading.Lock()
        self._window_start = clock()
        self._count = 0

    def allow(self) -> bool:
        """Consume one unit of budget; False once the window's budget is spent."""
        if not self.config.enabled:
            return True
        with self._lock:
            now = self._clock()
            if now - self._window_start >= _WINDOW:
                self._window_start = now
                self._count = 0
            if self._count >= self.config.requests_per_minute:
                return False
            self._count += 1
            return True

    def reset(self) -> None:
        with self._lock:
            self._window_start = self._clock()
            self._count = 0
