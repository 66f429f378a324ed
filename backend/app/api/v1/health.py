"""Liveness plus database reachability. Unauthenticated."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.api.deps import get_session_factory
from app.core.logging import log_event


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", summary="Health check")
def health(session_factory: sessionmaker[Session] = Depends(get_session_factory)) -> JSONResponse:
    checked_at = datetime.now(timezone.utc).isoformat()
    try:
        with session_factory() as session:
            session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        log_event(logger, "health_database_unreachable", level=logging.WARNING, exc_info=True)
        return JSONResponse(
            status_code=503,
            content={"status": "degraded", "database": "unreachable", "checked_at": checked_at},
        )
    return JSONResponse(status_code=200, content={"status": "ok", "database": "ok", "checked_at": checked_at})
