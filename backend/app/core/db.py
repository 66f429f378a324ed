"""Database engine and session factories.

Engines are built explicitly from settings and owned by the process entry
point; there is no module-level engine. PostgreSQL is the production target,
SQLite is accepted for local tooling and tests.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import DatabaseSettings
from app.core.logging import log_event


logger = logging.getLogger(__name__)


def create_db_engine(settings: DatabaseSettings) -> Engine:
    url = make_url(settings.url)
    kwargs: dict[str, Any] = {"pool_pre_ping": True, "future": True}

    if url.get_backend_name() == "postgresql":
        kwargs.update(
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout_s,
            connect_args={
                "options": f"-c statement_timeout={settings.statement_timeout_ms}",
                "connect_timeout": max(1, int(settings.pool_timeout_s)),
            },
        )

    return create_engine(url, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, class_=Session, autoflush=False, expire_on_commit=False)


def ping(engine: Engine) -> bool:
    """Round-trip a trivial query; False on any connection failure."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:  # noqa: BLE001
        log_event(logger, "database_ping_failed", level=logging.WARNING, exc_info=True, error=f"{type(e).__name__}: {e}")
        return False


def pool_status(engine: Engine) -> str:
    return engine.pool.status()
