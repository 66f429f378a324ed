from __future__ import annotations

import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Generator

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, delete
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


ROOT = Path(__file__).resolve().parents[2]

# Ensure `backend/app` is importable as top-level `app` for tests.
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app.core.base import Base  # noqa: E402
from app.core.db import create_session_factory  # noqa: E402
from app.core.env import load_env_if_present  # noqa: E402
from app.models import ApiToken, Notice  # noqa: E402
from app.repositories.notice_repo import NoticeStore  # noqa: E402
from app.schemas.notice import CanonicalNotice  # noqa: E402


UTC = timezone.utc
FIXTURES = Path(__file__).resolve().parent / "fixtures"


def _test_db_url() -> str | None:
    load_env_if_present()
    return os.environ.get("TEST_DATABASE_URL")


def _alembic_config(db_url: str) -> Config:
    cfg = Config(str(ROOT / "backend" / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "backend" / "alembic"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    return cfg


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    """PostgreSQL (migrated to head) when TEST_DATABASE_URL is set, else in-memory SQLite."""
    url = _test_db_url()
    if url:
        engine = create_engine(url, future=True)
        command.upgrade(_alembic_config(url), "head")
    else:
        engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            future=True,
        )
        Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> Generator[sessionmaker[Session], None, None]:
    yield create_session_factory(engine)
    with engine.begin() as conn:
        conn.execute(delete(ApiToken))
        conn.execute(delete(Notice))


@pytest.fixture()
def store(session_factory: sessionmaker[Session]) -> NoticeStore:
    return NoticeStore(session_factory)


@pytest.fixture()
def make_notice() -> Callable[..., CanonicalNotice]:
    def _make(**overrides: Any) -> CanonicalNotice:
        fields: dict[str, Any] = {
            "identifier": "A1/2025",
            "location": "KJFK",
            "effective_start": datetime(2025, 1, 15, 14, 0, tzinfo=UTC),
            "effective_end": datetime(2025, 1, 20, 23, 59, tzinfo=UTC),
            "body": "RWY 04L/22R CLSD",
            "raw_payload": "raw",
        }
        fields.update(overrides)
        return CanonicalNotice(**fields)

    return _make


@pytest.fixture()
def aixm_xml() -> str:
    return (FIXTURES / "aixm_notice.xml").read_text(encoding="utf-8")


class FakeClock:
    """Monotonic clock stand-in; tests advance it explicitly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()
