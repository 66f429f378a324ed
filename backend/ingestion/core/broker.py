"""Durable queue session over Redis Streams consumer groups.

Delivery model:
- One consumer group per deployment; each process is a named consumer.
- Messages are read with XREADGROUP (`count` = window size) and must be
  acknowledged with XACK. An unacknowledged message stays in the group's
  pending list and is redelivered by XAUTOCLAIM once it has been idle longer
  than the redelivery timeout. There is no negative acknowledgement.
- Connection loss is handled here, not by the coordinator: bounded reconnect
  attempts with a fixed wait, reported as lifecycle events.

The session calls its listener synchronously from the thread running `run()`,
so at most one message is in flight per session.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Protocol

import redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from app.core.config import BrokerSettings
from app.core.logging import log_event
from ingestion.core.errors import BrokerConnectivityError


logger = logging.getLogger(__name__)

PAYLOAD_FIELD = b"payload"

_CONNECTIVITY_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError)


class SessionEventCode(str, Enum):
    UP_NOTICE = "up_notice"
    CONNECT_FAILED_ERROR = "connect_failed_error"
    DISCONNECTED = "disconnected"
    RECONNECTING_NOTICE = "reconnecting_notice"
    RECONNECTED_NOTICE = "reconnected_notice"
    SUBSCRIPTION_OK = "subscription_ok"
    SUBSCRIPTION_ERROR = "subscription_error"
    MESSAGE = "message"


@dataclass(frozen=True, slots=True)
class BrokerMessage:
    message_id: str
    payload: bytes
    redelivered: bool = False
    _ack: Callable[[], bool] = field(default=lambda: True, repr=False, compare=False)

    def ack(self) -> bool:
        return self._ack()


@dataclass(frozen=True, slots=True)
class SessionEvent:
    code: SessionEventCode
    info: str = ""
    message: Optional[BrokerMessage] = None
    error: Optional[BaseException] = None


SessionListener = Callable[[SessionEvent], None]


class BrokerSession(Protocol):
    def set_listener(self, listener: SessionListener) -> None: ...

    def connect(self) -> None: ...

    def subscribe(self, queue_name: str) -> bool: ...

    def unsubscribe(self) -> None: ...

    def run(self) -> None: ...

    def stop(self) -> None: ...

    def disconnect(self) -> None: ...


def _default_client_factory(settings: BrokerSettings) -> "redis.Redis":
    return redis.Redis.from_url(
        settings.url,
        socket_connect_timeout=max(1.0, settings.reconnect_wait_s),
        # Must outlive the blocking XREADGROUP.
        socket_timeout=settings.read_block_ms / 1000.0 + 5.0,
        health_check_interval=30,
    )


def _as_str(value: Any) -> str:
    return value.decode() if isinstance(value, (bytes, bytearray)) else str(value)


class RedisStreamSession:
    def __init__(
        self,
        settings: BrokerSettings,
        *,
        client_factory: Callable[[BrokerSettings], "redis.Redis"] = _default_client_factory,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self._client_factory = client_factory
        self._sleep = sleep
        self._client: Optional[redis.Redis] = None
        self._listener: SessionListener = lambda event: None
        self._queue: Optional[str] = None
        self._claim_cursor = "0-0"
        self._stopping = False

    @property
    def connected(self) -> bool:
        return self._client is not None

    def set_listener(self, listener: SessionListener) -> None:
        self._listener = listener

    def _emit(self, code: SessionEventCode, info: str = "", **kwargs: Any) -> None:
        self._listener(SessionEvent(code=code, info=info, **kwargs))

    def _open_client(self) -> "redis.Redis":
        client = self._client_factory(self.settings)
        client.ping()
        return client

    def connect(self) -> None:
        """Up to `connect_retries` attempts; raises BrokerConnectivityError when all fail."""
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.settings.connect_retries + 1):
            try:
                self._client = self._open_client()
            except _CONNECTIVITY_ERRORS as e:
                last_error = e
                log_event(
                    logger,
                    "broker_connect_attempt_failed",
                    level=logging.WARNING,
                    attempt=attempt,
                    max_attempts=self.settings.connect_retries,
                    error=str(e),
                )
                if attempt < self.settings.connect_retries:
                    self._sleep(self.settings.reconnect_wait_s)
                continue
            self._stopping = False
            self._emit(SessionEventCode.UP_NOTICE, f"connected to {self.settings.url}")
            return

        err = BrokerConnectivityError(f"could not connect after {self.settings.connect_retries} attempts: {last_error}")
        self._emit(SessionEventCode.CONNECT_FAILED_ERROR, str(err), error=err)
        raise err from last_error

    def subscribe(self, queue_name: str) -> bool:
        if self._client is None:
            err = BrokerConnectivityError("subscribe called without a connection")
            self._emit(SessionEventCode.SUBSCRIPTION_ERROR, str(err), error=err)
            return False
        try:
            self._client.xgroup_create(
                queue_name,
                self.settings.group,
                id="0",
                mkstream=self.settings.create_if_missing,
            )
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                err = BrokerConnectivityError(f"cannot subscribe to {queue_name!r}: {e}")
                self._emit(SessionEventCode.SUBSCRIPTION_ERROR, str(err), error=err)
                return False
        except _CONNECTIVITY_ERRORS as e:
            err = BrokerConnectivityError(f"cannot subscribe to {queue_name!r}: {e}")
            self._emit(SessionEventCode.SUBSCRIPTION_ERROR, str(err), error=err)
            return False

        self._queue = queue_name
        self._claim_cursor = "0-0"
        self._emit(SessionEventCode.SUBSCRIPTION_OK, queue_name)
        return True

    def unsubscribe(self) -> None:
        # Pending entries stay with the group and are claimed by whoever reads next.
        self._queue = None

    def stop(self) -> None:
        """Ask `run()` to return after the message in hand; safe from signal handlers."""
        self._stopping = True

    def run(self) -> None:
        while not self._stopping and self._client is not None:
            if self._queue is None:
                self._sleep(0.1)
                continue
            self.poll_once()

    def poll_once(self) -> int:
        """One claim + read cycle; returns how many messages were delivered."""
        queue = self._queue
        if self._client is None or queue is None:
            return 0
        try:
            delivered = self._deliver_batch(self._claim_stale(queue), queue, redelivered=True)
            if self._stopping or self._queue is None:
                return delivered
            response = self._client.xreadgroup(
                self.settings.group,
                self.settings.consumer,
                {queue: ">"},
                count=self.settings.window_size,
                block=self.settings.read_block_ms,
            )
            for _stream, entries in response or []:
                delivered += self._deliver_batch(entries, queue, redelivered=False)
            return delivered
        except _CONNECTIVITY_ERRORS as e:
            self._handle_connection_loss(e)
            return 0

    def _claim_stale(self, queue: str) -> list:
        assert self._client is not None
        result = self._client.xautoclaim(
            queue,
            self.settings.group,
            self.settings.consumer,
            min_idle_time=int(self.settings.redelivery_timeout_s * 1000),
            start_id=self._claim_cursor,
            count=self.settings.window_size,
        )
        # [next_cursor, entries] (+ deleted ids on Redis >= 7)
        self._claim_cursor = _as_str(result[0]) if result else "0-0"
        return result[1] if result and len(result) > 1 else []

    def _deliver_batch(self, entries: list, queue: str, *, redelivered: bool) -> int:
        count = 0
        for message_id, fields in entries:
            if self._stopping or self._queue is None:
                break
            if fields is None:
                continue
            msg_id = _as_str(message_id)
            payload = fields.get(PAYLOAD_FIELD)
            if payload is None:
                payload = fields.get(PAYLOAD_FIELD.decode(), b"")
            if isinstance(payload, str):
                payload = payload.encode("utf-8")
            message = BrokerMessage(
                message_id=msg_id,
                payload=payload,
                redelivered=redelivered,
                _ack=lambda mid=msg_id: self._ack(queue, mid),
            )
            self._emit(SessionEventCode.MESSAGE, msg_id, message=message)
            count += 1
        return count

    def _ack(self, queue: str, message_id: str) -> bool:
        if self._client is None:
            return False
        try:
            return bool(self._client.xack(queue, self.settings.group, message_id))
        except _CONNECTIVITY_ERRORS as e:
            # Stays pending and is redelivered; the store upsert is idempotent.
            log_event(logger, "broker_ack_failed", level=logging.WARNING, message_id=message_id, error=str(e))
            return False

    def _handle_connection_loss(self, error: BaseException) -> None:
        self._close_client()
        self._emit(SessionEventCode.DISCONNECTED, str(error), error=error)
        for attempt in range(1, self.settings.reconnect_retries + 1):
            if self._stopping:
                return
            self._emit(SessionEventCode.RECONNECTING_NOTICE, f"attempt {attempt}/{self.settings.reconnect_retries}")
            self._sleep(self.settings.reconnect_wait_s)
            try:
                self._client = self._open_client()
            except _CONNECTIVITY_ERRORS as e:
                log_event(logger, "broker_reconnect_attempt_failed", level=logging.WARNING, attempt=attempt, error=str(e))
                continue
            self._emit(SessionEventCode.RECONNECTED_NOTICE, f"reconnected after {attempt} attempt(s)")
            return

        err = BrokerConnectivityError(f"gave up after {self.settings.reconnect_retries} reconnect attempts")
        self._emit(SessionEventCode.CONNECT_FAILED_ERROR, str(err), error=err)

    def _close_client(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            try:
                client.close()
            except _CONNECTIVITY_ERRORS:
                logger.debug("Ignoring error while closing broker client", exc_info=True)

    def disconnect(self) -> None:
        self._stopping = True
        self._queue = None
        if self._client is None:
            return
        self._close_client()
        self._emit(SessionEventCode.DISCONNECTED, "closed by client")
