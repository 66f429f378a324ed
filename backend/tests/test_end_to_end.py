"""Queue payload -> parser -> guarded upsert -> store, against the test database."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from ingestion.core.broker import BrokerMessage
from ingestion.core.circuit_breaker import CircuitBreaker
from ingestion.core.coordinator import IngestionCoordinator
from ingestion.core.guard import ResilienceGuard
from ingestion.core.retry import RetryPolicy


UTC = timezone.utc


class IdleSession:
    def set_listener(self, listener) -> None:
        self.listener = listener

    def connect(self) -> None: ...

    def subscribe(self, queue_name: str) -> bool:
        return True

    def unsubscribe(self) -> None: ...

    def run(self) -> None: ...

    def stop(self) -> None: ...

    def disconnect(self) -> None: ...


@pytest.fixture()
def coordinator(store, clock):
    guard = ResilienceGuard(CircuitBreaker(5, 60.0, clock=clock), RetryPolicy(sleep=lambda _s: None))
    coord = IngestionCoordinator(IdleSession(), store, guard, queue_name="notams")
    coord.start()
    return coord


def _deliver(coord, message_id: str, payload: bytes) -> list[str]:
    acks: list[str] = []
    coord.handle_message(BrokerMessage(message_id, payload, _ack=lambda: acks.append(message_id) or True))
    return acks


def test_aixm_message_is_stored_and_retrievable(coordinator, store, aixm_xml):
    assert _deliver(coordinator, "1-0", aixm_xml.encode("utf-8")) == ["1-0"]

    stored = store.get("A4146/2025")
    assert stored is not None
    assert stored.location == "MUXX"
    assert stored.effective_start == datetime(2025, 6, 10, 12, 0, tzinfo=UTC)
    assert stored.effective_end == datetime(2025, 6, 12, 18, 0, tzinfo=UTC)
    assert stored.schedule == "DAILY 1200-1800"
    assert stored.body.startswith("MILITARY EXER")
    assert stored.qualifier is not None and stored.qualifier.code == "QWMLW"
    assert stored.raw_payload == aixm_xml


def test_text_message_is_stored_and_redelivery_is_idempotent(coordinator, store):
    payload = b"A2/1234 NOTAMN\nA) KJFK\nB) 2501151400\nC) PERM\nE) ILS RWY 04R U/S"

    assert _deliver(coordinator, "2-0", payload) == ["2-0"]
    assert _deliver(coordinator, "2-0", payload) == ["2-0"]

    stats = coordinator.stats()
    assert stats.ingested == 2
    assert stats.duplicates == 1
    assert store.count() == 1
    stored = store.get("A2/1234")
    assert stored.is_permanent
    assert stored.body == "ILS RWY 04R U/S"


def test_malformed_xml_is_acked_without_a_row(coordinator, store):
    assert _deliver(coordinator, "3-0", b"<AIXMBasicMessage><unclosed>") == ["3-0"]
    assert store.count() == 0
    assert coordinator.stats().parse_failures == 1
