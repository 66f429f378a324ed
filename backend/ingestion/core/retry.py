"""Classified retry with capped exponential backoff.

Retriable: connection-class failures and transient driver SQLSTATEs.
Not retriable: constraint violations, syntax errors, anything unclassified.
The last failure is re-raised unchanged once attempts are exhausted.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, DisconnectionError, IntegrityError, ProgrammingError

from app.core.logging import log_event
from ingestion.core.errors import PermanentStorageError, TransientStorageError


logger = logging.getLogger(__name__)

T = TypeVar("T")

# admin_shutdown, crash_shutdown, cannot_connect_now, connection_exception,
# connection_does_not_exist, connection_failure, protocol_violation,
# too_many_connections
TRANSIENT_SQLSTATES = frozenset({"57P01", "57P02", "57P03", "08000", "08003", "08006", "08P01", "53300"})

_TRANSIENT_MESSAGE = re.compile(
    r"Connection terminated unexpectedly|connection timeout|ECONNRESET|ETIMEDOUT"
    r"|ECONNREFUSED|Client has encountered a connection error"
    r"|server closed the connection unexpectedly|could not connect to server",
    re.IGNORECASE,
)


def _sqlstate(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None) or exc
    # psycopg 3 exposes `sqlstate`; older drivers `pgcode`.
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_retriable_database_error(exc: BaseException) -> bool:
    if isinstance(exc, (PermanentStorageError, IntegrityError, ProgrammingError)):
        return False
    if isinstance(exc, (TransientStorageError, DisconnectionError, ConnectionError, TimeoutError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    if _sqlstate(exc) in TRANSIENT_SQLSTATES:
        return True
    return bool(_TRANSIENT_MESSAGE.search(str(exc)))


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int = 3
    backoff_base_s: float = 1.0
    max_backoff_s: float = 10.0
    is_retriable: Callable[[BaseException], bool] = is_retriable_database_error
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number `attempt + 1` (attempt is 0-based)."""
        return min(self.backoff_base_s * (2 ** attempt), self.max_backoff_s)

    def call(self, operation: Callable[[], T], *, label: str = "operation") -> T:
        attempt = 0
        while True:
            try:
                return operation()
            except Exception as e:
                if not self.is_retriable(e) or attempt >= self.max_retries:
                    if attempt:
                        log_event(
                            logger,
                            "retry_exhausted" if self.is_retriable(e) else "retry_aborted",
                            level=logging.WARNING,
                            label=label,
                            attempts=attempt + 1,
                            error=f"{type(e).__name__}: {e}",
                        )
                    raise
                delay = self.delay_for(attempt)
                log_event(
                    logger,
                    "retry_scheduled",
                    level=logging.WARNING,
                    label=label,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay_s=delay,
                    error=f"{type(e).__name__}: {e}",
                )
                self.sleep(delay)
                attempt += 1
