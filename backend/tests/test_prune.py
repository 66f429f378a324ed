from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine

from app.core.base import Base
from app.core.db import create_session_factory
from app.repositories.notice_repo import NoticeStore
from ingestion.jobs import prune_notices


UTC = timezone.utc
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


def _expired(make_notice, ident: str, days_ago: int):
    end = NOW - timedelta(days=days_ago)
    return make_notice(identifier=ident, effective_start=end - timedelta(days=1), effective_end=end)


def test_removes_only_notices_past_retention(store, make_notice):
    store.upsert(_expired(make_notice, "OLD/2025", 60))
    store.upsert(_expired(make_notice, "RECENT/2025", 10))
    store.upsert(make_notice(identifier="ACTIVE/2025", effective_start=NOW, effective_end=NOW + timedelta(days=3)))
    store.upsert(make_notice(identifier="PERM/2020", effective_start=NOW - timedelta(days=2000), effective_end=None))

    assert store.delete_expired(30, now=NOW) == 1

    assert store.get("OLD/2025") is None
    for ident in ("RECENT/2025", "ACTIVE/2025", "PERM/2020"):
        assert store.get(ident) is not None


def test_reports_deleted_count(store, make_notice):
    for i in range(5):
        store.upsert(_expired(make_notice, f"X{i}/2025", 40 + i))
    store.upsert(_expired(make_notice, "KEEP/2025", 5))

    assert store.delete_expired(30, now=NOW) == 5
    assert store.count() == 1


def test_nothing_eligible_deletes_nothing(store, make_notice):
    store.upsert(make_notice(identifier="PERM/2020", effective_end=None))
    assert store.delete_expired(0, now=NOW) == 0
    assert store.count() == 1


def test_negative_retention_rejected(store):
    with pytest.raises(ValueError):
        store.delete_expired(-1)


def test_prune_helper_uses_current_time(store, make_notice):
    long_ago = datetime.now(tz=UTC) - timedelta(days=400)
    store.upsert(make_notice(identifier="ANCIENT/2024", effective_start=long_ago, effective_end=long_ago))

    assert prune_notices.prune(store, 30) == 1


@pytest.fixture()
def sqlite_file_url(tmp_path, monkeypatch, make_notice):
    url = f"sqlite+pysqlite:///{tmp_path / 'notices.db'}"
    engine = create_engine(url, future=True)
    Base.metadata.create_all(engine)
    store = NoticeStore(create_session_factory(engine))
    long_ago = datetime.now(tz=UTC) - timedelta(days=90)
    store.upsert(make_notice(identifier="OLD/2025", effective_start=long_ago, effective_end=long_ago))
    store.upsert(make_notice(identifier="PERM/2020", effective_start=long_ago, effective_end=None))
    engine.dispose()

    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.delenv("NOTICE_RETENTION_DAYS", raising=False)
    return url


def test_main_prunes_with_days_override(sqlite_file_url):
    assert prune_notices.main(["--days", "30"]) == 0

    engine = create_engine(sqlite_file_url, future=True)
    try:
        store = NoticeStore(create_session_factory(engine))
        assert store.get("OLD/2025") is None
        assert store.get("PERM/2020") is not None
    finally:
        engine.dispose()


def test_main_retains_everything_inside_window(sqlite_file_url):
    assert prune_notices.main(["--days", "365"]) == 0

    engine = create_engine(sqlite_file_url, future=True)
    try:
        assert NoticeStore(create_session_factory(engine)).count() == 2
    finally:
        engine.dispose()


def test_main_rejects_negative_days(sqlite_file_url):
    assert prune_notices.main(["--days", "-5"]) == 1
