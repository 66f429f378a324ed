"""Pydantic records for notices.

CanonicalNotice is what the parser produces and the store consumes.
StoredNotice is what the store returns (adds surrogate id and timestamps).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


UTC = timezone.utc


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None or value.utcoffset() is None:
        # SQLite hands back naive values; everything is stored as UTC.
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Qualifier(BaseModel):
    """Q-line sub-record: classification plus spatial/altitude bounds."""

    fir: Optional[str] = None
    code: Optional[str] = None
    purpose: Optional[str] = None
    scope: Optional[str] = None
    traffic_type: Optional[str] = None
    lower_altitude: Optional[str] = None
    upper_altitude: Optional[str] = None
    coordinates: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class CanonicalNotice(BaseModel):
    identifier: str = Field(..., min_length=1, max_length=255)
    location: str = Field(..., min_length=1, max_length=10)
    effective_start: datetime
    effective_end: Optional[datetime] = None
    schedule: Optional[str] = None
    body: str = ""
    qualifier: Optional[Qualifier] = None
    purpose: Optional[str] = Field(None, max_length=10)
    scope: Optional[str] = Field(None, max_length=10)
    traffic_type: Optional[str] = Field(None, max_length=10)
    raw_payload: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("effective_start", "effective_end")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @property
    def is_permanent(self) -> bool:
        return self.effective_end is None


class StoredNotice(CanonicalNotice):
    id: UUID
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(frozen=True, from_attributes=True)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc_audit(cls, v: datetime) -> datetime:
        return _as_utc(v)  # type: ignore[return-value]


class NoticeFilters(BaseModel):
    """Composable query predicates; unset fields do not constrain."""

    location: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    purpose: Optional[str] = None
    scope: Optional[str] = None
    limit: int = Field(100, ge=1)
    offset: int = Field(0, ge=0)

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int


class NoticeListResponse(BaseModel):
    data: List[StoredNotice]
    pagination: Pagination


class NoticeResponse(BaseModel):
    data: StoredNotice
