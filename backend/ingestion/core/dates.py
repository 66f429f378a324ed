"""Notice date parsing.

Accepted forms, tried in order:
1. ISO-8601 (`2025-01-15T14:00:00Z`, `2025-01-15 14:00`, with or without offset)
2. `YYYYMMDDhhmm` (12 digits, UTC)
3. `YYMMDDhhmm` (10 digits, UTC, century 2000)

`PERM` / `PERMANENT` (any case) means "no expiration" and yields None without
being an error. Anything else yields None as well; callers that need to tell
the two apart use `is_permanent_marker`.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Optional


logger = logging.getLogger(__name__)

UTC = timezone.utc

PERMANENT_MARKERS = frozenset({"PERM", "PERMANENT"})

_ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")
_TWELVE_DIGITS = re.compile(r"^\d{12}$")
_TEN_DIGITS = re.compile(r"^\d{10}$")


def is_permanent_marker(value: Optional[str]) -> bool:
    return value is not None and value.strip().upper() in PERMANENT_MARKERS


def _to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None or dt.utcoffset() is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _parse_iso(value: str) -> Optional[datetime]:
    if not _ISO_PREFIX.match(value):
        return None
    candidate = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    try:
        return _to_utc(datetime.fromisoformat(candidate))
    except ValueError:
        return None


def _parse_fixed(value: str, *, year: int, offset: int) -> Optional[datetime]:
    try:
        return datetime(
            year,
            int(value[offset:offset + 2]),
            int(value[offset + 2:offset + 4]),
            int(value[offset + 4:offset + 6]),
            int(value[offset + 6:offset + 8]),
            tzinfo=UTC,
        )
    except ValueError:
        return None


def parse_notice_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a notice timestamp; never raises."""
    if value is None:
        return None
    s = str(value).strip()
    if not s or is_permanent_marker(s):
        return None

    parsed = _parse_iso(s)
    if parsed is not None:
        return parsed

    if _TWELVE_DIGITS.match(s):
        parsed = _parse_fixed(s, year=int(s[0:4]), offset=4)
    elif _TEN_DIGITS.match(s):
        parsed = _parse_fixed(s, year=2000 + int(s[0:2]), offset=2)

    if parsed is None:
        logger.debug("Unable to parse notice date %r", s)
    return parsed
