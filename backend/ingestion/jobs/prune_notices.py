"""Retention pruning: delete notices that expired more than N days ago.

Permanent notices (no effective end) are never touched. Intended for cron or
a scheduler; runs independently of the ingestion consumer.

Run:
  python -m ingestion.jobs.prune_notices [--days N]
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

# Ensure `backend/` is on sys.path so `import app...` works when run from repo root.
BASE_DIR = Path(__file__).resolve().parents[2]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from app.core.config import Settings  # noqa: E402
from app.core.db import create_db_engine, create_session_factory, ping  # noqa: E402
from app.core.logging import ROOT_LOGGER_NAME, configure_logging, log_event  # noqa: E402
from app.repositories.notice_repo import NoticeStore  # noqa: E402


UTC = timezone.utc
logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.prune")


def prune(store: NoticeStore, retention_days: int) -> int:
    started_at = datetime.now(tz=UTC)
    deleted = store.delete_expired(retention_days, now=started_at)
    log_event(
        logger,
        "prune_run_summary",
        started_at=started_at.isoformat(),
        retention_days=retention_days,
        deleted_count=deleted,
    )
    return deleted


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Delete notices expired beyond the retention window.")
    parser.add_argument("--days", type=int, default=None, help="override NOTICE_RETENTION_DAYS")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    retention_days = settings.retention_days if args.days is None else args.days
    if retention_days < 0:
        log_event(logger, "prune_config_error", level=logging.ERROR, error="--days must be >= 0")
        return 1

    engine = create_db_engine(settings.database)
    try:
        if not ping(engine):
            log_event(logger, "prune_failed", level=logging.ERROR, error="database unavailable")
            return 1
        prune(NoticeStore(create_session_factory(engine)), retention_days)
        return 0
    except Exception as e:  # noqa: BLE001
        log_event(logger, "prune_failed", level=logging.ERROR, exc_info=True, error=f"{type(e).__name__}: {e}")
        return 1
    finally:
        engine.dispose()


if __name__ == "__main__":
    raise SystemExit(main())
