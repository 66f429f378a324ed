"""Notice parser: raw payload -> CanonicalNotice (or None).

Two wire formats:
- structured XML (AIXM-style event message), selected when the first
  non-whitespace character is `<`
- legacy line-tagged text (`A)`..`E)` lines plus an identifier line)

`parse()` never raises. Every rejected payload is logged at DEBUG with a
category tag; `parse_detailed()` exposes the category to callers that count
or report drops.
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from pydantic import ValidationError

from app.core.logging import log_event, preview
from app.schemas.notice import CanonicalNotice, Qualifier
from ingestion.core.dates import is_permanent_marker, parse_notice_date
from ingestion.core.errors import ParseErrorCategory, ParseFailure
from ingestion.core.xml_tree import child, find_text, parse_xml_tree


logger = logging.getLogger(__name__)

RawPayload = Union[bytes, bytearray, memoryview, str]

UNKNOWN_IDENTIFIER = "UNKNOWN"
PLACEHOLDER_LOCATION = "ZZZZ"
LOCATION_MAX = 10
CODE_MAX = 10

# Navigation chain: each step is an ordered list of candidate keys. Unprefixed
# names are also tried with the `aixm:` and `event:` prefixes.
_ROOT_KEYS = ("AIXMBasicMessage", "message:AIXMBasicMessage")
_MEMBER_KEYS = ("hasMember", "message:hasMember")
_EVENT_KEYS = ("Event",)
_TIME_SLICE_KEYS = ("timeSlice",)
_EVENT_TIME_SLICE_KEYS = ("EventTimeSlice",)
_TEXT_NOTAM_KEYS = ("textNOTAM",)
_NOTAM_KEYS = ("NOTAM",)

_VALID_TIME_KEYS = ("gml:validTime", "validTime")
_TIME_PERIOD_KEYS = ("gml:TimePeriod", "TimePeriod")
_BEGIN_KEYS = ("gml:beginPosition", "beginPosition")
_END_KEYS = ("gml:endPosition", "endPosition")

_IDENTIFIER_LINE = re.compile(r"^[A-Z]\d+/\d+")
_TAGGED_LINE = re.compile(r"^([A-EQ])\)\s*(.*)$")


class PayloadFormat(str, Enum):
    XML = "xml"
    TEXT = "text"


@dataclass(frozen=True, slots=True)
class ParseResult:
    format: PayloadFormat
    notice: Optional[CanonicalNotice] = None
    failure: Optional[ParseFailure] = None

    @property
    def ok(self) -> bool:
        return self.notice is not None


def decode_payload(raw: RawPayload) -> str:
    if isinstance(raw, str):
        return raw
    return bytes(raw).decode("utf-8-sig", errors="replace")


def detect_format(text: str) -> PayloadFormat:
    stripped = text.lstrip()
    if stripped.startswith("\ufeff"):
        stripped = stripped[1:].lstrip()
    return PayloadFormat.XML if stripped.startswith("<") else PayloadFormat.TEXT


def _clip(value: Optional[str], limit: int) -> Optional[str]:
    return value[:limit] if value else None


class NoticeParser:
    """Stateless translator; one instance may be shared freely."""

    def parse(self, raw: RawPayload) -> Optional[CanonicalNotice]:
        return self.parse_detailed(raw).notice

    def parse_detailed(self, raw: RawPayload) -> ParseResult:
        text = decode_payload(raw)
        fmt = detect_format(text)
        try:
            if fmt is PayloadFormat.XML:
                notice = self._parse_xml(text)
            else:
                notice = self._parse_text(text)
        except ParseFailure as failure:
            log_event(
                logger,
                "notice_parse_failed",
                level=logging.DEBUG,
                format=fmt.value,
                category=failure.category.value,
                section=failure.section,
                detail=failure.detail,
                payload_preview=preview(text),
            )
            return ParseResult(format=fmt, failure=failure)
        return ParseResult(format=fmt, notice=notice)

    # -- structured XML --------------------------------------------------

    def _parse_xml(self, text: str) -> CanonicalNotice:
        try:
            tree = parse_xml_tree(text)
        except ET.ParseError as e:
            raise ParseFailure(ParseErrorCategory.MALFORMED_XML, str(e)) from e

        message = child(tree, _ROOT_KEYS)
        if message is None:
            raise ParseFailure(
                ParseErrorCategory.MISSING_ROOT_ELEMENT,
                f"root element is {next(iter(tree))!r}",
                section="AIXMBasicMessage",
            )

        event_time_slice = message
        for section, keys in (
            ("hasMember", _MEMBER_KEYS),
            ("Event", _EVENT_KEYS),
            ("timeSlice", _TIME_SLICE_KEYS),
            ("EventTimeSlice", _EVENT_TIME_SLICE_KEYS),
        ):
            found = child(event_time_slice, keys)
            if found is None:
                raise ParseFailure(ParseErrorCategory.MISSING_NESTED_SECTION, section=section)
            event_time_slice = found

        text_notam = child(event_time_slice, _TEXT_NOTAM_KEYS)
        notam = child(text_notam, _NOTAM_KEYS) if text_notam is not None else None
        if notam is None:
            notam = child(event_time_slice, _NOTAM_KEYS)
        if notam is None:
            raise ParseFailure(ParseErrorCategory.MISSING_NESTED_SECTION, section="NOTAM")

        start, end = self._xml_effective_window(notam, event_time_slice)

        return self._build(
            identifier=self._xml_identifier(notam),
            location=(find_text(notam, ("location", "icaoLocation")) or PLACEHOLDER_LOCATION)[:LOCATION_MAX],
            effective_start=start,
            effective_end=end,
            schedule=find_text(notam, ("schedule", "itemD")),
            body=find_text(notam, ("text", "notamText", "itemE")) or "",
            qualifier=self._xml_qualifier(notam),
            purpose=_clip(find_text(notam, ("purpose",)), CODE_MAX),
            scope=_clip(find_text(notam, ("scope",)), CODE_MAX),
            traffic_type=_clip(find_text(notam, ("traffic",)), CODE_MAX),
            raw_payload=text,
        )

    @staticmethod
    def _xml_identifier(notam: dict) -> str:
        explicit = find_text(notam, ("notamId",))
        if explicit:
            return explicit
        series = find_text(notam, ("series",))
        number = find_text(notam, ("number",))
        year = find_text(notam, ("year",))
        if series and number and year:
            return f"{series}{number}/{year}"
        log_event(logger, "notice_identifier_missing", level=logging.WARNING, fallback=UNKNOWN_IDENTIFIER)
        return UNKNOWN_IDENTIFIER

    @staticmethod
    def _xml_effective_window(notam: dict, event_time_slice: dict) -> tuple[datetime, Optional[datetime]]:
        start_raw = find_text(notam, ("effectiveStart", "validityStart"))
        end_raw = find_text(notam, ("effectiveEnd", "validityEnd"))
        start = parse_notice_date(start_raw)
        end = parse_notice_date(end_raw)
        end_is_permanent = is_permanent_marker(end_raw)

        if start is None or (end is None and not end_is_permanent):
            period = child(child(event_time_slice, _VALID_TIME_KEYS), _TIME_PERIOD_KEYS)
            if period is not None:
                begin_raw = find_text(period, _BEGIN_KEYS)
                end_pos_raw = find_text(period, _END_KEYS)
                if start is None and begin_raw:
                    start_raw = start_raw or begin_raw
                    start = parse_notice_date(begin_raw)
                if end is None and not end_is_permanent and end_pos_raw:
                    end = parse_notice_date(end_pos_raw)

        if start is None:
            if start_raw:
                raise ParseFailure(ParseErrorCategory.DATE_UNPARSEABLE, repr(start_raw), section="effectiveStart")
            raise ParseFailure(ParseErrorCategory.MISSING_REQUIRED_FIELD, section="effectiveStart")
        return start, end

    @staticmethod
    def _xml_qualifier(notam: dict) -> Optional[Qualifier]:
        q = child(notam, ("qLine", "QLine"))
        if q is None:
            return None
        qualifier = Qualifier(
            fir=find_text(q, ("fir", "FIR")),
            code=find_text(q, ("code", "qCode", "QCode")),
            purpose=find_text(q, ("purpose", "Purpose")),
            scope=find_text(q, ("scope", "Scope")),
            traffic_type=find_text(q, ("trafficType", "TrafficType")),
            lower_altitude=find_text(q, ("lowerAltitude", "LowerLimit")),
            upper_altitude=find_text(q, ("upperAltitude", "UpperLimit")),
            coordinates=find_text(q, ("coordinates", "Coordinates")),
        )
        if not any(qualifier.model_dump().values()):
            return None
        return qualifier

    # -- legacy tagged text ----------------------------------------------

    def _parse_text(self, text: str) -> CanonicalNotice:
        lines = [line.strip() for line in text.splitlines()]
        lines = [line for line in lines if line]

        identifier: Optional[str] = None
        location: Optional[str] = None
        start: Optional[datetime] = None
        end: Optional[datetime] = None
        schedule: Optional[str] = None
        body = text
        qualifier: Optional[Qualifier] = None

        for line in lines:
            tagged = _TAGGED_LINE.match(line)
            if tagged:
                tag, value = tagged.group(1), tagged.group(2).strip()
                if tag == "A":
                    location = value[:LOCATION_MAX] or None
                elif tag == "B":
                    start = parse_notice_date(value)
                elif tag == "C":
                    end = parse_notice_date(value)
                elif tag == "D":
                    schedule = value or None
                elif tag == "E":
                    body = value
                else:
                    qualifier = self._text_qualifier(value)
            elif identifier is None and _IDENTIFIER_LINE.match(line):
                identifier = line.split()[0]

        missing = [
            name
            for name, value in (("identifier", identifier), ("location", location), ("effective_start", start))
            if value is None
        ]
        if missing:
            raise ParseFailure(ParseErrorCategory.TEXT_MISSING_REQUIRED_LINES, ",".join(missing))

        return self._build(
            identifier=identifier,
            location=location,
            effective_start=start,
            effective_end=end,
            schedule=schedule,
            body=body,
            qualifier=qualifier,
            raw_payload=text,
        )

    @staticmethod
    def _text_qualifier(value: str) -> Optional[Qualifier]:
        # FIR/QCODE/TRAFFIC/PURPOSE/SCOPE/LOWER/UPPER/COORDS
        parts = [p.strip() or None for p in value.split("/")]
        if not any(parts):
            return None
        parts += [None] * (8 - len(parts))
        fir, code, traffic, purpose, scope, lower, upper, coords = parts[:8]
        return Qualifier(
            fir=fir,
            code=code,
            traffic_type=traffic,
            purpose=purpose,
            scope=scope,
            lower_altitude=lower,
            upper_altitude=upper,
            coordinates=coords,
        )

    @staticmethod
    def _build(**fields) -> CanonicalNotice:
        try:
            return CanonicalNotice(**fields)
        except ValidationError as e:
            raise ParseFailure(ParseErrorCategory.INVALID_RECORD, str(e.errors(include_url=False))) from e


_default_parser = NoticeParser()


def parse(raw: RawPayload) -> Optional[CanonicalNotice]:
    """Module-level convenience over a shared NoticeParser."""
    return _default_parser.parse(raw)
