"""Failure-threshold circuit breaker for storage calls.

States:
- CLOSED: normal operation, every call admitted.
- OPEN: calls denied until `timeout_s` has elapsed since the last qualifying
  failure; the next admission check after that resets to CLOSED.

There is no HALF_OPEN probe: after the timeout the breaker admits a full burst
of traffic. Only failures the classifier accepts (connection-health signals)
are counted; everything else passes through untouched.

State is guarded by a lock so one breaker can be shared across worker threads.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, TypeVar

from app.core.logging import log_event
from ingestion.core.errors import CircuitOpenError
from ingestion.core.retry import is_retriable_database_error


logger = logging.getLogger(__name__)

T = TypeVar("T")

Classifier = Callable[[BaseException], bool]
Clock = Callable[[], float]


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"


@dataclass(frozen=True, slots=True)
class CircuitSnapshot:
    state: CircuitState
    failures: int
    last_failure_at: Optional[float]

    @property
    def is_open(self) -> bool:
        return self.state is CircuitState.OPEN


def is_connection_error(exc: BaseException) -> bool:
    """Default classifier: the same transient rule the retry policy uses.

    An exhausted retry sequence is therefore always one qualifying failure, and
    errors the retry policy treats as permanent never move the breaker.
    """
    return is_retriable_database_error(exc)


class CircuitBreaker:
    """Gatekeeper for calls against a shared backend."""

    def __init__(
        self,
        threshold: int = 5,
        timeout_s: float = 60.0,
        *,
        classifier: Classifier = is_connection_error,
        clock: Clock = time.monotonic,
        name: str = "storage",
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        self.threshold = threshold
        self.timeout_s = timeout_s
        self.name = name
        self._classifier = classifier
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_at: Optional[float] = None

    def is_request_allowed(self) -> bool:
        with self._lock:
            if self._state is CircuitState.CLOSED:
                return True
            elapsed = self._clock() - (self._last_failure_at or 0.0)
            if elapsed > self.timeout_s:
                self._failures = 0
                self._transition(CircuitState.CLOSED, f"timeout elapsed ({elapsed:.1f}s)")
                return True
            return False

    def record_success(self) -> None:
        # Does not close an OPEN breaker; only the timeout does.
        with self._lock:
            self._failures = 0

    def record_failure(self, exc: BaseException) -> bool:
        """Count `exc` if it qualifies; returns whether it was counted."""
        if not self._classifier(exc):
            return False
        with self._lock:
            self._failures += 1
            self._last_failure_at = self._clock()
            if self._state is CircuitState.CLOSED and self._failures >= self.threshold:
                self._transition(CircuitState.OPEN, f"{self._failures} failures: {type(exc).__name__}: {exc}")
        return True

    def snapshot(self) -> CircuitSnapshot:
        with self._lock:
            return CircuitSnapshot(self._state, self._failures, self._last_failure_at)

    def execute(self, operation: Callable[[], T]) -> T:
        if not self.is_request_allowed():
            raise CircuitOpenError(f"circuit {self.name} is open")
        try:
            result = operation()
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result

    def _transition(self, new_state: CircuitState, reason: str) -> None:
        # Caller holds the lock.
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        log_event(
            logger,
            "circuit_state_changed",
            level=logging.ERROR if new_state is CircuitState.OPEN else logging.INFO,
            circuit=self.name,
            old_state=old_state.value,
            new_state=new_state.value,
            reason=reason,
        )
