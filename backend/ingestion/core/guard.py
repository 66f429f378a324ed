"""ResilienceGuard: retry composed inside the circuit breaker.

A whole retry sequence counts as one logical attempt toward the breaker, so
an exhausted sequence of transient failures is one qualifying failure.
"""

from __future__ import annotations

from typing import Callable, Optional, TypeVar

from app.core.config import ResilienceSettings
from ingestion.core.circuit_breaker import CircuitBreaker, CircuitSnapshot
from ingestion.core.retry import RetryPolicy


T = TypeVar("T")


class ResilienceGuard:
    def __init__(self, breaker: CircuitBreaker, retry: Optional[RetryPolicy] = None) -> None:
        self.breaker = breaker
        self.retry = retry or RetryPolicy()

    @classmethod
    def from_settings(cls, settings: ResilienceSettings) -> "ResilienceGuard":
        return cls(
            CircuitBreaker(settings.breaker_threshold, settings.breaker_timeout_s),
            RetryPolicy(
                max_retries=settings.max_retries,
                backoff_base_s=settings.backoff_base_s,
                max_backoff_s=settings.max_backoff_s,
            ),
        )

    def execute(self, operation: Callable[[], T], *, label: str = "storage") -> T:
        """Raises CircuitOpenError without invoking `operation` while open."""
        return self.breaker.execute(lambda: self.retry.call(operation, label=label))

    def is_request_allowed(self) -> bool:
        return self.breaker.is_request_allowed()

    def record_success(self) -> None:
        self.breaker.record_success()

    def record_failure(self, exc: BaseException) -> bool:
        return self.breaker.record_failure(exc)

    def snapshot(self) -> CircuitSnapshot:
        return self.breaker.snapshot()
