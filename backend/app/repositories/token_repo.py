"""API token lookups for bearer authentication."""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from app.models.access_token import ApiToken


UTC = timezone.utc


def find_active_token(db: Session, token: str) -> Optional[ApiToken]:
    stmt = select(ApiToken).where(ApiToken.token == token, ApiToken.is_active.is_(True))
    return db.scalars(stmt).one_or_none()


def touch_last_used(session_factory: sessionmaker[Session], token_id: UUID, *, now: Optional[datetime] = None) -> None:
    """Stamp `last_used_at`; runs outside the request transaction."""
    with session_factory() as session, session.begin():
        session.execute(
            update(ApiToken).where(ApiToken.id == token_id).values(last_used_at=now or datetime.now(UTC))
        )


def create_token(db: Session, name: str, *, token: Optional[str] = None) -> ApiToken:
    row = ApiToken(token=token or secrets.token_urlsafe(32), name=name, is_active=True)
    db.add(row)
    db.flush()
    return row
