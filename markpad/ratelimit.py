"""Fixed-window per-client request limiter."""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass
class _Window:
    count: int
    reset_time: float


class RateLimiter:
    """Count requests per client key inside a fixed time window.

    State lives on the instance; the server constructs one per application.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        cleanup_probability: float = 0.01,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._cleanup_probability = cleanup_probability
        self._windows: dict[str, _Window] = {}

    def __len__(self) -> int:
        return len(self._windows)

    def hit(self, key: str) -> bool:
        """Record a request; return False when ``key`` is over its limit."""
        now = self._clock()
        window = self._windows.get(key)
        allowed = True
        if window is not None and window.reset_time > now:
            window.count += 1
            allowed = window.count <= self.max_requests
        else:
            self._windows[key] = _Window(count=1, reset_time=now + self.window_seconds)

        if random.random() < self._cleanup_probability:
            self.cleanup(now)
        return allowed

    def cleanup(self, now: float | None = None) -> None:
        """Drop windows that have expired."""
        current = self._clock() if now is None else now
        expired = [key for key, window in self._windows.items() if window.reset_time < current]
        for key in expired:
            del self._windows[key]
