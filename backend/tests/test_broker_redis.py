from __future__ import annotations

from unittest import mock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from app.core.config import BrokerSettings
from ingestion.core.broker import RedisStreamSession, SessionEventCode
from ingestion.core.errors import BrokerConnectivityError


def _settings(**overrides) -> BrokerSettings:
    values = dict(
        url="redis://broker:6379/0",
        queue_name="notams",
        group="ingest",
        consumer="worker-1",
        connect_retries=3,
        reconnect_retries=2,
        reconnect_wait_s=0.5,
        window_size=5,
        redelivery_timeout_s=30.0,
        read_block_ms=100,
    )
    values.update(overrides)
    return BrokerSettings(**values)


def _client() -> mock.MagicMock:
    client = mock.MagicMock(name="redis")
    client.xautoclaim.return_value = [b"0-0", []]
    client.xreadgroup.return_value = []
    client.xack.return_value = 1
    return client


class Harness:
    def __init__(self, clients, **settings) -> None:
        self.clients = list(clients)
        self.events = []
        self.sleeps: list[float] = []
        self.session = RedisStreamSession(
            _settings(**settings),
            client_factory=self._factory,
            sleep=self.sleeps.append,
        )
        self.session.set_listener(self.events.append)

    def _factory(self, _settings):
        item = self.clients.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    @property
    def codes(self):
        return [e.code for e in self.events]


def test_connect_emits_up_notice():
    h = Harness([_client()])
    h.session.connect()

    assert h.codes == [SessionEventCode.UP_NOTICE]
    assert h.session.connected


def test_connect_retries_with_fixed_wait_then_succeeds():
    h = Harness([RedisConnectionError("refused"), RedisConnectionError("refused"), _client()])
    h.session.connect()

    assert h.sleeps == [0.5, 0.5]
    assert h.codes == [SessionEventCode.UP_NOTICE]


def test_connect_gives_up_after_configured_attempts():
    h = Harness([RedisConnectionError("refused")] * 3)

    with pytest.raises(BrokerConnectivityError):
        h.session.connect()

    assert h.codes == [SessionEventCode.CONNECT_FAILED_ERROR]
    assert isinstance(h.events[0].error, BrokerConnectivityError)
    assert not h.session.connected


def test_subscribe_creates_group_and_tolerates_existing_group():
    client = _client()
    client.xgroup_create.side_effect = ResponseError("BUSYGROUP Consumer Group name already exists")
    h = Harness([client], create_if_missing=True)
    h.session.connect()

    assert h.session.subscribe("notams")

    client.xgroup_create.assert_called_once_with("notams", "ingest", id="0", mkstream=True)
    assert h.codes[-1] is SessionEventCode.SUBSCRIPTION_OK


def test_subscribe_to_missing_stream_reports_error():
    client = _client()
    client.xgroup_create.side_effect = ResponseError(
        "The XGROUP subcommand requires the key to exist."
    )
    h = Harness([client])
    h.session.connect()

    assert not h.session.subscribe("missing")
    assert h.codes[-1] is SessionEventCode.SUBSCRIPTION_ERROR


def test_poll_delivers_messages_and_ack_uses_xack():
    client = _client()
    client.xreadgroup.return_value = [[b"notams", [(b"1-0", {b"payload": b"A1/2025"}), (b"2-0", {b"payload": b"A2/2025"})]]]
    h = Harness([client])
    h.session.connect()
    h.session.subscribe("notams")

    assert h.session.poll_once() == 2

    messages = [e.message for e in h.events if e.code is SessionEventCode.MESSAGE]
    assert [m.message_id for m in messages] == ["1-0", "2-0"]
    assert messages[0].payload == b"A1/2025"
    assert not messages[0].redelivered
    client.xreadgroup.assert_called_once_with("ingest", "worker-1", {"notams": ">"}, count=5, block=100)

    assert messages[0].ack()
    client.xack.assert_called_once_with("notams", "ingest", "1-0")


def test_stale_pending_messages_are_claimed_as_redeliveries():
    client = _client()
    client.xautoclaim.return_value = [b"0-0", [(b"7-0", {b"payload": b"retry me"})], []]
    h = Harness([client])
    h.session.connect()
    h.session.subscribe("notams")

    h.session.poll_once()

    client.xautoclaim.assert_called_once_with(
        "notams", "ingest", "worker-1", min_idle_time=30000, start_id="0-0", count=5
    )
    message = next(e.message for e in h.events if e.code is SessionEventCode.MESSAGE)
    assert message.message_id == "7-0"
    assert message.redelivered


def test_ack_failure_is_not_raised():
    client = _client()
    client.xreadgroup.return_value = [[b"notams", [(b"1-0", {b"payload": b"x"})]]]
    client.xack.side_effect = RedisConnectionError("gone")
    h = Harness([client])
    h.session.connect()
    h.session.subscribe("notams")
    h.session.poll_once()

    message = next(e.message for e in h.events if e.code is SessionEventCode.MESSAGE)
    assert message.ack() is False


def test_connection_loss_reconnects_with_lifecycle_events():
    broken, fresh = _client(), _client()
    broken.xautoclaim.side_effect = RedisConnectionError("reset")
    h = Harness([broken, RedisConnectionError("still down"), fresh])
    h.session.connect()
    h.session.subscribe("notams")
    h.events.clear()

    assert h.session.poll_once() == 0

    assert h.codes == [
        SessionEventCode.DISCONNECTED,
        SessionEventCode.RECONNECTING_NOTICE,
        SessionEventCode.RECONNECTING_NOTICE,
        SessionEventCode.RECONNECTED_NOTICE,
    ]
    assert h.sleeps == [0.5, 0.5]
    assert h.session.connected


def test_reconnect_exhaustion_emits_connect_failed_and_ends_run():
    broken = _client()
    broken.xautoclaim.side_effect = RedisConnectionError("reset")
    h = Harness([broken, RedisConnectionError("down"), RedisConnectionError("down")])
    h.session.connect()
    h.session.subscribe("notams")

    h.session.run()

    assert h.codes[-1] is SessionEventCode.CONNECT_FAILED_ERROR
    assert not h.session.connected


def test_stop_ends_run_loop():
    client = _client()
    h = Harness([client])
    h.session.connect()
    h.session.subscribe("notams")
    client.xreadgroup.side_effect = lambda *a, **kw: h.session.stop() or []

    h.session.run()

    assert client.xreadgroup.call_count == 1


def test_disconnect_closes_client_and_emits_event():
    client = _client()
    h = Harness([client])
    h.session.connect()

    h.session.disconnect()

    client.close.assert_called_once()
    assert h.codes[-1] is SessionEventCode.DISCONNECTED
    assert not h.session.connected
