"""Notice store: idempotent upsert, filtered reads, retention pruning.

Every operation runs in its own short transaction from the injected session
factory, so a store instance can be shared between the ingestion path, the
read API and the pruning job. Callers wrap writes in a ResilienceGuard; the
store itself never retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import delete, func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.sql import Select

from app.core.logging import log_event
from app.models.notice import Notice
from app.schemas.notice import CanonicalNotice, NoticeFilters, StoredNotice


logger = logging.getLogger(__name__)

UTC = timezone.utc

# Overwritten on conflict; identifier/id/created_at are never touched.
MUTABLE_COLUMNS = (
    "location",
    "effective_start",
    "effective_end",
    "schedule",
    "body",
    "qualifier",
    "purpose",
    "scope",
    "traffic_type",
    "raw_payload",
)

_INSERT_BY_DIALECT = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


@dataclass(frozen=True, slots=True)
class UpsertResult:
    notice: StoredNotice
    inserted: bool

    @property
    def duplicate(self) -> bool:
        return not self.inserted


def _row_values(notice: CanonicalNotice) -> dict[str, Any]:
    return {
        "identifier": notice.identifier,
        "location": notice.location,
        "effective_start": notice.effective_start,
        "effective_end": notice.effective_end,
        "schedule": notice.schedule,
        "body": notice.body,
        "qualifier": notice.qualifier.model_dump() if notice.qualifier is not None else None,
        "purpose": notice.purpose,
        "scope": notice.scope,
        "traffic_type": notice.traffic_type,
        "raw_payload": notice.raw_payload,
    }


def _apply_filters(stmt: Select, filters: NoticeFilters) -> Select:
    if filters.location:
        stmt = stmt.where(Notice.location == filters.location)
    if filters.start is not None:
        # Permanent notices always overlap an open-ended lower bound.
        stmt = stmt.where(or_(Notice.effective_end.is_(None), Notice.effective_end >= filters.start))
    if filters.end is not None:
        stmt = stmt.where(Notice.effective_start <= filters.end)
    if filters.purpose:
        stmt = stmt.where(Notice.purpose == filters.purpose)
    if filters.scope:
        stmt = stmt.where(Notice.scope == filters.scope)
    return stmt


class NoticeStore:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def upsert(self, notice: CanonicalNotice) -> UpsertResult:
        """Insert, or overwrite every mutable field of the row with the same identifier."""
        now = datetime.now(UTC)
        with self._session_factory() as session, session.begin():
            insert = _INSERT_BY_DIALECT.get(session.get_bind().dialect.name, pg_insert)
            stmt = insert(Notice).values(id=uuid4(), created_at=now, updated_at=now, **_row_values(notice))
            stmt = stmt.on_conflict_do_update(
                index_elements=[Notice.identifier],
                set_={**{c: stmt.excluded[c] for c in MUTABLE_COLUMNS}, "updated_at": now},
            ).returning(Notice)
            row = session.scalars(stmt, execution_options={"populate_existing": True}).one()
            stored = StoredNotice.model_validate(row)

        # created_at is only equal to updated_at on the row's first write.
        inserted = stored.created_at == stored.updated_at
        log_event(
            logger,
            "notice_upserted",
            level=logging.DEBUG,
            identifier=stored.identifier,
            inserted=inserted,
        )
        return UpsertResult(notice=stored, inserted=inserted)

    def get(self, identifier: str) -> Optional[StoredNotice]:
        with self._session_factory() as session:
            row = session.scalars(select(Notice).where(Notice.identifier == identifier)).one_or_none()
            return StoredNotice.model_validate(row) if row is not None else None

    def query(self, filters: Optional[NoticeFilters] = None) -> list[StoredNotice]:
        """Newest effective-start first; id breaks ties so pages are stable."""
        filters = filters or NoticeFilters()
        stmt = _apply_filters(select(Notice), filters)
        stmt = stmt.order_by(Notice.effective_start.desc(), Notice.id).limit(filters.limit).offset(filters.offset)
        with self._session_factory() as session:
            return [StoredNotice.model_validate(row) for row in session.scalars(stmt)]

    def count(self, filters: Optional[NoticeFilters] = None) -> int:
        stmt = _apply_filters(select(func.count()).select_from(Notice), filters or NoticeFilters())
        with self._session_factory() as session:
            return int(session.scalar(stmt) or 0)

    def delete_expired(self, retention_days: int, *, now: Optional[datetime] = None) -> int:
        """Remove notices whose end is older than the cutoff; permanent notices are never eligible."""
        if retention_days < 0:
            raise ValueError("retention_days must be >= 0")
        cutoff = (now or datetime.now(UTC)).astimezone(UTC) - timedelta(days=retention_days)
        stmt = delete(Notice).where(Notice.effective_end.is_not(None), Notice.effective_end < cutoff)
        with self._session_factory() as session, session.begin():
            deleted = session.execute(stmt, execution_options={"synchronize_session": False}).rowcount
        log_event(logger, "notices_pruned", retention_days=retention_days, cutoff=cutoff.isoformat(), deleted=deleted)
        return int(deleted or 0)
