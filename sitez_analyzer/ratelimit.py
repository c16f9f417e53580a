from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable


class RateLimiter:
    """Sliding-window counter: at most ``requests`` calls per ``window_s`` seconds."""

    def __init__(self, requests: int, window_s: float, clock: Callable[[], float] = time.monotonic):
        self.requests = requests
        self.window_s = window_s
        self._clock = clock
        self._calls: deque[float] = deque()
        self._lock = threading.Lock()

    def _trim(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.window_s:
            self._calls.popleft()

    def try_acquire(self) -> bool:
        now = self._clock()
        with self._lock:
            self._trim(now)
            if len(self._calls) >= self.requests:
                return False
            self._calls.append(now)
            return True

    def remaining(self) -> int:
        with self._lock:
            self._trim(self._clock())
            return max(0, self.requests - len(self._calls))

    def retry_after(self) -> float:
        with self._lock:
            now = self._clock()
            self._trim(now)
            if len(self._calls) < self.requests:
                return 0.0
            if not self._calls:
                return float(self.window_s)
            return max(0.0, self.window_s - (now - self._calls[0]))
