"""Ingestion consumer entry point: queue -> parse -> guarded upsert -> ack.

Long-running. SIGINT/SIGTERM trigger an orderly shutdown: stop accepting,
let the in-flight message finish, release the broker session, dispose the
database pool. Exit code 0 on orderly stop, 1 when the broker could not be
reached or the connection was lost for good.

Run:
  python -m ingestion.jobs.run_ingestion        (from backend/)
"""

from __future__ import annotations

import logging
import signal
import sys
from pathlib import Path
from typing import Any

# Ensure `backend/` is on sys.path so `import app...` works when run from repo root.
BASE_DIR = Path(__file__).resolve().parents[2]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from app.core.config import Settings  # noqa: E402
from app.core.db import create_db_engine, create_session_factory  # noqa: E402
from app.core.logging import ROOT_LOGGER_NAME, configure_logging, log_event  # noqa: E402
from app.repositories.notice_repo import NoticeStore  # noqa: E402
from ingestion.core.broker import RedisStreamSession  # noqa: E402
from ingestion.core.coordinator import IngestionCoordinator, stats_dict  # noqa: E402
from ingestion.core.errors import BrokerConnectivityError  # noqa: E402
from ingestion.core.guard import ResilienceGuard  # noqa: E402


logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.ingestion")


def main() -> int:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    if not settings.broker.queue_name:
        log_event(logger, "ingestion_config_error", level=logging.ERROR, error="BROKER_QUEUE is not set")
        return 1

    engine = create_db_engine(settings.database)
    store = NoticeStore(create_session_factory(engine))
    guard = ResilienceGuard.from_settings(settings.resilience)
    session = RedisStreamSession(settings.broker)
    coordinator = IngestionCoordinator(session, store, guard, queue_name=settings.broker.queue_name)

    def _on_signal(signum: int, _frame: Any) -> None:
        log_event(logger, "ingestion_signal", signal=signal.Signals(signum).name)
        coordinator.request_stop()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    log_event(
        logger,
        "ingestion_starting",
        queue=settings.broker.queue_name,
        group=settings.broker.group,
        consumer=settings.broker.consumer,
        window_size=settings.broker.window_size,
    )
    exit_code = 0
    try:
        coordinator.run()
    except BrokerConnectivityError as e:
        log_event(logger, "ingestion_broker_unavailable", level=logging.ERROR, error=str(e))
        exit_code = 1
    finally:
        engine.dispose()

    if exit_code == 0 and not coordinator.stop_requested:
        # Delivery loop ended without a stop request: reconnection gave up.
        exit_code = 1

    log_event(logger, "ingestion_exited", exit_code=exit_code, **stats_dict(coordinator.stats()))
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
