"""Notice model.

A notice row is the stored form of one canonical aeronautical notice. The
business key `identifier` is the upsert conflict target; a re-ingested notice
overwrites every mutable column of the existing row.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.base import Base, CreatedAtMixin, JSONVariant, UpdatedAtMixin, UUIDPrimaryKeyMixin


class Notice(UUIDPrimaryKeyMixin, CreatedAtMixin, UpdatedAtMixin, Base):
    __tablename__ = "notices"

    identifier: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    location: Mapped[str] = mapped_column(String(10), nullable=False)

    effective_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # NULL means permanent, never "unknown".
    effective_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    schedule: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)

    qualifier: Mapped[Optional[dict]] = mapped_column(JSONVariant, nullable=True)
    purpose: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    scope: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    traffic_type: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    raw_payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_notices_location", "location"),
        Index("ix_notices_effective_start", "effective_start"),
        Index("ix_notices_effective_end", "effective_end"),
        Index("ix_notices_created_at", "created_at"),
        Index("ix_notices_purpose", "purpose"),
        Index("ix_notices_scope", "scope"),
    )

    def __repr__(self) -> str:
        return f"<Notice(identifier={self.identifier}, location={self.location})>"
