"""Ingestion coordinator: broker lifecycle + per-message pipeline.

Connection states:

    DISCONNECTED -> CONNECTING -> CONNECTED -> SUBSCRIBED -> PROCESSING
                                                   ^             |
                                                   +-------------+

DISCONNECTED is reachable from every state. Reconnection is the broker
session's job; after it reports RECONNECTED the coordinator re-subscribes.

Per message:
1. breaker denies admission -> leave unacknowledged (redelivered later)
2. parse -> None means drop: log and acknowledge
3. guarded upsert -> success acknowledges; any failure leaves the message
   unacknowledged for broker-driven redelivery
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from app.core.logging import log_event
from app.schemas.notice import CanonicalNotice
from ingestion.core.broker import BrokerMessage, BrokerSession, SessionEvent, SessionEventCode
from ingestion.core.errors import BrokerConnectivityError, CircuitOpenError, TransientStorageError
from ingestion.core.guard import ResilienceGuard
from ingestion.core.parser import NoticeParser


logger = logging.getLogger(__name__)

ErrorReporter = Callable[[BaseException, dict[str, Any]], None]


class NoticeSink(Protocol):
    def upsert(self, notice: CanonicalNotice) -> Any: ...


class IngestionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SUBSCRIBED = "subscribed"
    PROCESSING = "processing"


@dataclass(frozen=True, slots=True)
class IngestionStats:
    received: int = 0
    ingested: int = 0
    duplicates: int = 0
    parse_failures: int = 0
    storage_failures: int = 0
    skipped_open: int = 0


def log_error_reporter(exc: BaseException, context: dict[str, Any]) -> None:
    """Default operator channel: one structured ERROR line with traceback."""
    log_event(
        logger,
        "ingestion_error",
        level=logging.ERROR,
        exc_info=(type(exc), exc, exc.__traceback__),
        error=f"{type(exc).__name__}: {exc}",
        **context,
    )


class IngestionCoordinator:
    def __init__(
        self,
        session: BrokerSession,
        store: NoticeSink,
        guard: ResilienceGuard,
        *,
        queue_name: str,
        parser: Optional[NoticeParser] = None,
        error_reporter: ErrorReporter = log_error_reporter,
    ) -> None:
        self.session = session
        self.store = store
        self.guard = guard
        self.queue_name = queue_name
        self.parser = parser or NoticeParser()
        self.report_error = error_reporter

        self._state = IngestionState.DISCONNECTED
        self._state_lock = threading.Lock()
        self._accepting = False
        self._stop_requested = False
        self._idle = threading.Event()
        self._idle.set()

        self._counts = {f.name: 0 for f in fields(IngestionStats)}
        self._counts_lock = threading.Lock()

        self._handlers: dict[SessionEventCode, Callable[[SessionEvent], None]] = {
            SessionEventCode.UP_NOTICE: self._on_up,
            SessionEventCode.CONNECT_FAILED_ERROR: self._on_connect_failed,
            SessionEventCode.DISCONNECTED: self._on_disconnected,
            SessionEventCode.RECONNECTING_NOTICE: self._on_reconnecting,
            SessionEventCode.RECONNECTED_NOTICE: self._on_reconnected,
            SessionEventCode.SUBSCRIPTION_OK: self._on_subscription_ok,
            SessionEventCode.SUBSCRIPTION_ERROR: self._on_subscription_error,
            SessionEventCode.MESSAGE: self._on_message,
        }
        session.set_listener(self.on_event)

    # -- public surface --------------------------------------------------

    @property
    def state(self) -> IngestionState:
        return self._state

    @property
    def accepting(self) -> bool:
        return self._accepting

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def stats(self) -> IngestionStats:
        with self._counts_lock:
            return IngestionStats(**self._counts)

    def start(self) -> None:
        """Connect and subscribe; raises BrokerConnectivityError if the session cannot connect."""
        self._accepting = True
        self._transition(IngestionState.CONNECTING, "start")
        self.session.connect()

    def run(self) -> None:
        """Start, then block in the session's delivery loop until stopped."""
        self.start()
        try:
            self.session.run()
        finally:
            self.stop()

    def request_stop(self) -> None:
        """Stop accepting and unblock `run()`; safe to call from a signal handler."""
        self._stop_requested = True
        self._accepting = False
        self.session.stop()

    def stop(self, *, timeout_s: float = 30.0) -> IngestionStats:
        """Orderly shutdown: stop accepting, unsubscribe, drain in-flight, disconnect."""
        self._accepting = False
        self.session.unsubscribe()
        if not self._idle.wait(timeout_s):
            log_event(logger, "ingestion_drain_timeout", level=logging.WARNING, timeout_s=timeout_s)
        self.session.disconnect()
        self._transition(IngestionState.DISCONNECTED, "stopped")
        stats = self.stats()
        log_event(logger, "ingestion_stopped", **stats_dict(stats))
        return stats

    def on_event(self, event: SessionEvent) -> None:
        self._handlers[event.code](event)

    # -- lifecycle handlers ----------------------------------------------

    def _on_up(self, event: SessionEvent) -> None:
        self._transition(IngestionState.CONNECTED, event.info)
        self._subscribe()

    def _on_connect_failed(self, event: SessionEvent) -> None:
        self._transition(IngestionState.DISCONNECTED, event.info)
        self.report_error(
            event.error or BrokerConnectivityError(event.info),
            {"phase": "connect", "queue": self.queue_name},
        )

    def _on_disconnected(self, event: SessionEvent) -> None:
        self._transition(IngestionState.DISCONNECTED, event.info)

    def _on_reconnecting(self, event: SessionEvent) -> None:
        self._transition(IngestionState.CONNECTING, event.info)

    def _on_reconnected(self, event: SessionEvent) -> None:
        self._transition(IngestionState.CONNECTED, event.info)
        self._subscribe()

    def _on_subscription_ok(self, event: SessionEvent) -> None:
        self._transition(IngestionState.SUBSCRIBED, event.info)

    def _on_subscription_error(self, event: SessionEvent) -> None:
        self.report_error(
            event.error or BrokerConnectivityError(event.info),
            {"phase": "subscribe", "queue": self.queue_name},
        )

    def _on_message(self, event: SessionEvent) -> None:
        if event.message is not None:
            self.handle_message(event.message)

    def _subscribe(self) -> None:
        if self._accepting:
            self.session.subscribe(self.queue_name)

    # -- per-message pipeline --------------------------------------------

    def handle_message(self, message: BrokerMessage) -> None:
        """Never raises; anything escaping the pipeline counts as a transient storage failure."""
        if not self._accepting:
            return
        self._idle.clear()
        self._transition(IngestionState.PROCESSING, message.message_id, quiet=True)
        try:
            self._process(message)
        except Exception as e:  # noqa: BLE001
            log_event(
                logger,
                "message_handler_crashed",
                level=logging.ERROR,
                message_id=message.message_id,
                error=f"{type(e).__name__}: {e}",
            )
            self.report_error(e, {"phase": "handle_message", "message_id": message.message_id})
            self.guard.record_failure(TransientStorageError(f"unhandled: {type(e).__name__}: {e}"))
        finally:
            if self._state is IngestionState.PROCESSING:
                self._transition(IngestionState.SUBSCRIBED, message.message_id, quiet=True)
            self._idle.set()

    def _process(self, message: BrokerMessage) -> None:
        self._bump("received")

        if not self.guard.is_request_allowed():
            self._bump("skipped_open")
            log_event(logger, "message_deferred", level=logging.DEBUG, message_id=message.message_id, reason="circuit_open")
            return

        if not message.payload or not message.payload.strip():
            log_event(logger, "message_empty", level=logging.WARNING, message_id=message.message_id)
            message.ack()
            return

        result = self.parser.parse_detailed(message.payload)
        if result.notice is None:
            self._bump("parse_failures")
            log_event(
                logger,
                "message_dropped",
                level=logging.WARNING,
                message_id=message.message_id,
                format=result.format.value,
                category=result.failure.category.value if result.failure else None,
            )
            message.ack()
            return

        notice = result.notice
        try:
            outcome = self.guard.execute(lambda: self.store.upsert(notice), label="notice_upsert")
        except CircuitOpenError:
            self._bump("skipped_open")
            log_event(logger, "message_deferred", level=logging.DEBUG, message_id=message.message_id, reason="circuit_open")
            return
        except Exception as e:  # noqa: BLE001
            self._bump("storage_failures")
            self.report_error(
                e,
                {"phase": "store", "message_id": message.message_id, "identifier": notice.identifier},
            )
            return

        self._bump("ingested")
        inserted = bool(getattr(outcome, "inserted", True))
        if not inserted:
            self._bump("duplicates")
        message.ack()
        log_event(
            logger,
            "notice_ingested",
            message_id=message.message_id,
            identifier=notice.identifier,
            location=notice.location,
            inserted=inserted,
            redelivered=message.redelivered,
        )

    # -- helpers ---------------------------------------------------------

    def _bump(self, name: str) -> None:
        with self._counts_lock:
            self._counts[name] += 1

    def _transition(self, new_state: IngestionState, reason: str, *, quiet: bool = False) -> None:
        with self._state_lock:
            old_state = self._state
            if old_state is new_state:
                return
            self._state = new_state
        if quiet:
            return
        log_event(
            logger,
            "ingestion_state_changed",
            old_state=old_state.value,
            new_state=new_state.value,
            reason=reason,
        )


def stats_dict(stats: IngestionStats) -> dict[str, int]:
    return asdict(stats)
