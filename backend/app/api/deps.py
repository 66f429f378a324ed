"""API dependencies.

The session factory and rate limiter are owned by the application instance
(`app.state`), never by module globals, so tests can build isolated apps.
"""

from __future__ import annotations

from collections.abc import Generator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session, sessionmaker

from app.repositories.notice_repo import NoticeStore


def get_session_factory(request: Request) -> sessionmaker[Session]:
    factory = getattr(request.app.state, "session_factory", None)
    if factory is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database not configured.")
    return factory


def get_db_session(
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
) -> Generator[Session, None, None]:
    """Request-scoped session for reads."""
    session: Session = session_factory()
    try:
        session.autoflush = False
        yield session
    finally:
        session.close()


def get_notice_store(session_factory: sessionmaker[Session] = Depends(get_session_factory)) -> NoticeStore:
    return NoticeStore(session_factory)

