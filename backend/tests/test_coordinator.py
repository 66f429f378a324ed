from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

from ingestion.core.broker import BrokerMessage, SessionEvent, SessionEventCode
from ingestion.core.circuit_breaker import CircuitBreaker
from ingestion.core.coordinator import IngestionCoordinator, IngestionState, IngestionStats
from ingestion.core.errors import BrokerConnectivityError, TransientStorageError
from ingestion.core.guard import ResilienceGuard
from ingestion.core.retry import RetryPolicy


TEXT_NOTICE = b"A2/1234 NOTAMN\nA) KJFK\nB) 2501151400\nC) 2501202359\nE) RWY 04L/22R CLSD"


class FakeSession:
    """In-process BrokerSession; tests drive it by emitting events."""

    def __init__(self, *, connect_ok: bool = True) -> None:
        self.connect_ok = connect_ok
        self.listener = None
        self.subscriptions: list[str] = []
        self.calls: list[str] = []
        self.to_deliver: list[BrokerMessage] = []

    def set_listener(self, listener) -> None:
        self.listener = listener

    def emit(self, code: SessionEventCode, info: str = "", **kwargs: Any) -> None:
        self.listener(SessionEvent(code=code, info=info, **kwargs))

    def connect(self) -> None:
        self.calls.append("connect")
        if not self.connect_ok:
            err = BrokerConnectivityError("refused")
            self.emit(SessionEventCode.CONNECT_FAILED_ERROR, str(err), error=err)
            raise err
        self.emit(SessionEventCode.UP_NOTICE, "up")

    def subscribe(self, queue_name: str) -> bool:
        self.subscriptions.append(queue_name)
        self.emit(SessionEventCode.SUBSCRIPTION_OK, queue_name)
        return True

    def unsubscribe(self) -> None:
        self.calls.append("unsubscribe")

    def run(self) -> None:
        self.calls.append("run")
        for message in self.to_deliver:
            self.emit(SessionEventCode.MESSAGE, message.message_id, message=message)

    def stop(self) -> None:
        self.calls.append("stop")

    def disconnect(self) -> None:
        self.calls.append("disconnect")
        self.emit(SessionEventCode.DISCONNECTED, "closed by client")


@dataclass
class _Outcome:
    inserted: bool


class FakeStore:
    def __init__(self, failures: list[BaseException] | None = None) -> None:
        self.failures = list(failures or [])
        self.saved: dict[str, Any] = {}

    def upsert(self, notice):
        if self.failures:
            raise self.failures.pop(0)
        inserted = notice.identifier not in self.saved
        self.saved[notice.identifier] = notice
        return _Outcome(inserted=inserted)


class Tracked:
    def __init__(self, message_id: str, payload: bytes) -> None:
        self.acks: list[str] = []
        self.message = BrokerMessage(
            message_id=message_id,
            payload=payload,
            _ack=lambda: self.acks.append(message_id) or True,
        )

    @property
    def acked(self) -> bool:
        return bool(self.acks)


@pytest.fixture()
def reported() -> list[tuple[BaseException, dict]]:
    return []


def _coordinator(session, store, clock, reported, *, threshold: int = 5, max_retries: int = 0):
    guard = ResilienceGuard(
        CircuitBreaker(threshold, 60.0, clock=clock),
        RetryPolicy(max_retries=max_retries, sleep=lambda _s: None),
    )
    return IngestionCoordinator(
        session,
        store,
        guard,
        queue_name="notams",
        error_reporter=lambda exc, ctx: reported.append((exc, ctx)),
    )


def test_start_connects_and_subscribes(clock, reported):
    session = FakeSession()
    coord = _coordinator(session, FakeStore(), clock, reported)

    assert coord.state is IngestionState.DISCONNECTED
    coord.start()

    assert session.subscriptions == ["notams"]
    assert coord.state is IngestionState.SUBSCRIBED
    assert coord.accepting


def test_connect_failure_is_reported_and_raised(clock, reported):
    coord = _coordinator(FakeSession(connect_ok=False), FakeStore(), clock, reported)

    with pytest.raises(BrokerConnectivityError):
        coord.start()

    assert coord.state is IngestionState.DISCONNECTED
    assert reported and reported[0][1]["phase"] == "connect"


def test_resubscribes_after_reconnect(clock, reported):
    session = FakeSession()
    coord = _coordinator(session, FakeStore(), clock, reported)
    coord.start()

    session.emit(SessionEventCode.DISCONNECTED, "socket closed")
    assert coord.state is IngestionState.DISCONNECTED
    session.emit(SessionEventCode.RECONNECTING_NOTICE, "attempt 1/20")
    assert coord.state is IngestionState.CONNECTING
    session.emit(SessionEventCode.RECONNECTED_NOTICE, "back")

    assert session.subscriptions == ["notams", "notams"]
    assert coord.state is IngestionState.SUBSCRIBED


def test_subscription_error_is_reported(clock, reported):
    session = FakeSession()
    coord = _coordinator(session, FakeStore(), clock, reported)
    session.emit(SessionEventCode.SUBSCRIPTION_ERROR, "no such queue", error=BrokerConnectivityError("no such queue"))

    assert reported[0][1] == {"phase": "subscribe", "queue": "notams"}
    assert coord.state is IngestionState.DISCONNECTED


def test_valid_message_is_stored_then_acked(clock, reported):
    store = FakeStore()
    coord = _coordinator(FakeSession(), store, clock, reported)
    coord.start()
    tracked = Tracked("1-0", TEXT_NOTICE)

    coord.handle_message(tracked.message)

    assert tracked.acked
    assert "A2/1234" in store.saved
    assert coord.stats() == IngestionStats(received=1, ingested=1)
    assert coord.state is IngestionState.SUBSCRIBED


def test_redelivered_duplicate_counts_as_duplicate(clock, reported):
    store = FakeStore()
    coord = _coordinator(FakeSession(), store, clock, reported)
    coord.start()

    for mid in ("1-0", "1-0"):
        tracked = Tracked(mid, TEXT_NOTICE)
        coord.handle_message(tracked.message)
        assert tracked.acked

    stats = coord.stats()
    assert stats.ingested == 2
    assert stats.duplicates == 1
    assert len(store.saved) == 1


def test_unparseable_message_is_dropped_and_acked(clock, reported):
    store = FakeStore()
    coord = _coordinator(FakeSession(), store, clock, reported)
    coord.start()
    tracked = Tracked("2-0", b"<AIXMBasicMessage><hasMember/></AIXMBasicMessage>")

    coord.handle_message(tracked.message)

    assert tracked.acked
    assert store.saved == {}
    assert coord.stats().parse_failures == 1
    assert reported == []


def test_empty_payload_is_acked_without_storing(clock, reported):
    store = FakeStore()
    coord = _coordinator(FakeSession(), store, clock, reported)
    coord.start()
    tracked = Tracked("3-0", b"   \n")

    coord.handle_message(tracked.message)

    assert tracked.acked
    assert store.saved == {}


def test_storage_failure_leaves_message_unacked_and_reports(clock, reported):
    store = FakeStore([TransientStorageError("connection reset")])
    coord = _coordinator(FakeSession(), store, clock, reported)
    coord.start()
    tracked = Tracked("4-0", TEXT_NOTICE)

    coord.handle_message(tracked.message)

    assert not tracked.acked
    assert coord.stats().storage_failures == 1
    exc, ctx = reported[0]
    assert isinstance(exc, TransientStorageError)
    assert ctx["phase"] == "store"
    assert ctx["identifier"] == "A2/1234"

    # Broker redelivers; the second attempt succeeds.
    again = Tracked("4-0", TEXT_NOTICE)
    coord.handle_message(again.message)
    assert again.acked
    assert store.saved["A2/1234"].location == "KJFK"


def test_open_breaker_defers_without_ack_or_store_call(clock, reported):
    store = FakeStore([TransientStorageError("down")] * 2)
    coord = _coordinator(FakeSession(), store, clock, reported, threshold=2)
    coord.start()

    for i in range(2):
        coord.handle_message(Tracked(f"5-{i}", TEXT_NOTICE).message)
    assert coord.guard.snapshot().is_open

    deferred = Tracked("5-9", TEXT_NOTICE)
    coord.handle_message(deferred.message)

    assert not deferred.acked
    assert coord.stats().skipped_open == 1
    assert store.saved == {}

    clock.advance(61.0)
    recovered = Tracked("5-9", TEXT_NOTICE)
    coord.handle_message(recovered.message)
    assert recovered.acked


def test_crash_in_pipeline_is_contained_and_counted_by_breaker(clock, reported):
    coord = _coordinator(FakeSession(), FakeStore(), clock, reported, threshold=5)
    coord.start()

    def boom(_raw):
        raise KeyError("parser bug")

    coord.parser.parse_detailed = boom
    tracked = Tracked("6-0", TEXT_NOTICE)

    coord.handle_message(tracked.message)

    assert not tracked.acked
    assert reported[0][1]["phase"] == "handle_message"
    assert coord.guard.snapshot().failures == 1
    assert coord.state is IngestionState.SUBSCRIBED


def test_messages_ignored_when_not_accepting(clock, reported):
    store = FakeStore()
    coord = _coordinator(FakeSession(), store, clock, reported)
    tracked = Tracked("7-0", TEXT_NOTICE)

    coord.handle_message(tracked.message)

    assert not tracked.acked
    assert coord.stats().received == 0


def test_stop_unsubscribes_drains_and_disconnects(clock, reported):
    session = FakeSession()
    coord = _coordinator(session, FakeStore(), clock, reported)
    coord.start()
    coord.handle_message(Tracked("8-0", TEXT_NOTICE).message)

    stats = coord.stop(timeout_s=0.1)

    assert session.calls[-2:] == ["unsubscribe", "disconnect"]
    assert coord.state is IngestionState.DISCONNECTED
    assert not coord.accepting
    assert stats.ingested == 1


def test_request_stop_prevents_further_processing(clock, reported):
    session = FakeSession()
    coord = _coordinator(session, FakeStore(), clock, reported)
    coord.start()

    coord.request_stop()
    tracked = Tracked("9-0", TEXT_NOTICE)
    coord.handle_message(tracked.message)

    assert coord.stop_requested
    assert "stop" in session.calls
    assert not tracked.acked


def test_run_delivers_then_stops(clock, reported):
    session = FakeSession()
    store = FakeStore()
    coord = _coordinator(session, store, clock, reported)
    first, second = Tracked("10-0", TEXT_NOTICE), Tracked("10-1", b"garbage")
    session.to_deliver = [first.message, second.message]

    coord.run()

    assert first.acked and second.acked
    assert session.calls == ["connect", "run", "unsubscribe", "disconnect"]
    assert coord.stats() == IngestionStats(received=2, ingested=1, parse_failures=1)
    assert coord.state is IngestionState.DISCONNECTED
