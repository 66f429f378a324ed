"""Ingestion error taxonomy.

- ParseFailure never leaves the parser; the message is acknowledged and dropped.
- Storage errors are classified (transient vs permanent) by the resilience layer.
  Driver exceptions are classified as-is; the two storage classes below exist
  for callers that want to state the class explicitly.
- CircuitOpenError means "not attempted"; the message stays unacknowledged.
- BrokerConnectivityError is reported, then left to the broker client's own
  reconnection policy.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class IngestionError(RuntimeError):
    """Base error for ingestion."""


class ParseErrorCategory(str, Enum):
    MALFORMED_XML = "malformed_xml"
    MISSING_ROOT_ELEMENT = "missing_root_element"
    MISSING_NESTED_SECTION = "missing_nested_section"
    MISSING_REQUIRED_FIELD = "missing_required_field"
    DATE_UNPARSEABLE = "date_unparseable"
    TEXT_MISSING_REQUIRED_LINES = "text_missing_required_lines"
    INVALID_RECORD = "invalid_record"


class ParseFailure(IngestionError):
    """Malformed or incomplete input; non-fatal."""

    def __init__(self, category: ParseErrorCategory, detail: str = "", *, section: Optional[str] = None) -> None:
        self.category = category
        self.detail = detail
        self.section = section
        super().__init__(f"{category.value}: {detail}" if detail else category.value)


class TransientStorageError(IngestionError):
    """Connection-class storage failure; retried and counted by the breaker."""


class PermanentStorageError(IngestionError):
    """Constraint/syntax/unclassified storage failure; never retried."""


class CircuitOpenError(IngestionError):
    """Raised instead of invoking an operation while the breaker denies admission."""


class BrokerConnectivityError(IngestionError):
    """Connection or subscription failure reported by the broker client."""
