"""Per-token hourly rate limiting.

Fixed window per clock hour, keyed by token fingerprint. Counters live in
process memory, so with several workers the budget is per worker.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from fastapi import HTTPException, status


class RateLimitExceeded(HTTPException):
    pass


@dataclass(slots=True)
class _Window:
    start_hour: int
    count: int


class InMemoryHourlyRateLimiter:
    def __init__(self, *, limit_per_hour: int, clock: Callable[[], float] = time.time) -> None:
        if limit_per_hour <= 0:
            raise ValueError("limit_per_hour must be > 0")
        self._limit = limit_per_hour
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    def check(self, key: str) -> None:
        hour = int(self._clock()) // 3600
        with self._lock:
            w = self._windows.get(key)
            if w is None or w.start_hour != hour:
                w = _Window(start_hour=hour, count=0)
                self._windows[key] = w
            w.count += 1
            exceeded = w.count > self._limit
        if exceeded:
            raise RateLimitExceeded(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Rate limit exceeded. Please reduce request cadence.",
            )
