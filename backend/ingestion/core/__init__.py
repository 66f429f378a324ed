"""Notice ingestion core.

- parser: raw payload -> CanonicalNotice or None (never raises)
- guard: circuit breaker + classified retry around storage calls
- broker: durable queue session (Redis Streams consumer groups)
- coordinator: broker lifecycle and per-message acknowledgement policy
"""

from ingestion.core.broker import BrokerMessage, RedisStreamSession, SessionEvent, SessionEventCode
from ingestion.core.circuit_breaker import CircuitBreaker, CircuitSnapshot, CircuitState, is_connection_error
from ingestion.core.coordinator import IngestionCoordinator, IngestionState, IngestionStats
from ingestion.core.errors import (
    BrokerConnectivityError,
    CircuitOpenError,
    IngestionError,
    ParseErrorCategory,
    ParseFailure,
    PermanentStorageError,
    TransientStorageError,
)
from ingestion.core.guard import ResilienceGuard
from ingestion.core.parser import NoticeParser, ParseResult, PayloadFormat, detect_format, parse
from ingestion.core.retry import RetryPolicy, is_retriable_database_error

__all__ = [
    "BrokerMessage",
    "RedisStreamSession",
    "SessionEvent",
    "SessionEventCode",
    "CircuitBreaker",
    "CircuitSnapshot",
    "CircuitState",
    "is_connection_error",
    "IngestionCoordinator",
    "IngestionState",
    "IngestionStats",
    "BrokerConnectivityError",
    "CircuitOpenError",
    "IngestionError",
    "ParseErrorCategory",
    "ParseFailure",
    "PermanentStorageError",
    "TransientStorageError",
    "ResilienceGuard",
    "NoticeParser",
    "ParseResult",
    "PayloadFormat",
    "detect_format",
    "parse",
    "RetryPolicy",
    "is_retriable_database_error",
]
