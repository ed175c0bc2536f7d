"""Rate limiting for public endpoints.

`InMemoryRateLimiter` keeps its counters in process memory, so each process
limits independently. Running more than one instance needs a RateLimiter backed
by a shared store, injected through `ragbot.deps.get_rate_limiter`.
"""

import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds

    def retry_after(self, now: float) -> int:
        return max(0, math.ceil(self.reset_at - now))


class RateLimiter(ABC):
    @abstractmethod
    def check(self, key: str) -> RateLimitResult:
        """Count one request for `key` and report whether it is allowed."""


@dataclass
class _Window:
    count: int
    reset_at: float


class InMemoryRateLimiter(RateLimiter):
    """Fixed-window counter per key."""

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 15 * 60,
        clock: Callable[[], float] = time.time,
        cleanup_every: int = 1000,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self.cleanup_every = cleanup_every
        self._windows: Dict[str, _Window] = {}
        self._checks = 0

    def check(self, key: str) -> RateLimitResult:
        now = self.clock()
        self._checks += 1
        if self._checks % self.cleanup_every == 0:
            self.cleanup(now)

        window = self._windows.get(key)
        if window is None or now >= window.reset_at:
            window = _Window(count=1, reset_at=now + self.window_seconds)
            self._windows[key] = window
            return RateLimitResult(True, self.max_requests, self.max_requests - 1, window.reset_at)

        if window.count >= self.max_requests:
            return RateLimitResult(False, self.max_requests, 0, window.reset_at)

        window.count += 1
        return RateLimitResult(True, self.max_requests, self.max_requests - window.count, window.reset_at)

    def cleanup(self, now: float | None = None) -> None:
        now = self.clock() if now is None else now
        for key in [k for k, w in self._windows.items() if now >= w.reset_at]:
            del self._windows[key]

    def reset(self) -> None:
        self._windows.clear()
        self._checks = 0
