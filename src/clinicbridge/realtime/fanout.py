"""Realtime Fan-out - store change events to in-process listeners.

    DISCONNECTED --start()--> CONNECTING --> SUBSCRIBED
         ^                                      |
         +------ stop() / transport error ------+

A pump thread reads the transport into a bounded queue. A single dispatcher
thread drains it, so every listener sees events once and in arrival order.
There is no automatic reconnect: after an error the fan-out stays
DISCONNECTED (with last_error set) until start() is called again.
"""

from __future__ import annotations

import itertools
import queue
import threading
from enum import Enum
from typing import Callable, Iterator, Protocol

from clinicbridge.errors import UpstreamUnavailable
from clinicbridge.models import ChangeEvent
from clinicbridge.observability.correlation import bound_correlation_id
from clinicbridge.observability.logging import get_logger
from clinicbridge.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_QUEUE_SIZE = 1000

_STOP = object()


class FanoutState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"


class ChangeTransport(Protocol):
    def connect(self) -> None: ...

    def iter_events(self) -> Iterator[ChangeEvent]: ...

    def close(self) -> None: ...


Listener = Callable[[ChangeEvent], None]


class Subscription:
    def __init__(
        self,
        fanout: "RealtimeFanout",
        sub_id: int,
        listener: Listener,
        table: str | None,
        user_id: str | None,
    ) -> None:
        self._fanout = fanout
        self.id = sub_id
        self.listener = listener
        self.table = table
        self.user_id = user_id

    def matches(self, event: ChangeEvent) -> bool:
        if self.table is not None and event.table != self.table:
            return False
        if self.user_id is not None:
            # Rows without a user_id are broadcast to every operator
            owner = event.user_id
            return owner is None or owner == self.user_id
        return True

    def unsubscribe(self) -> None:
        self._fanout.unsubscribe(self)


class RealtimeFanout:
    def __init__(
        self,
        transport_factory: Callable[[], ChangeTransport],
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self._transport_factory = transport_factory
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._lock = threading.Lock()
        self._subscriptions: dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        self._state = FanoutState.DISCONNECTED
        self._transport: ChangeTransport | None = None
        self._stopping = threading.Event()
        self._pump_thread: threading.Thread | None = None
        self._dispatch_thread: threading.Thread | None = None
        self.last_error: str | None = None
        self.dropped = 0
        self.delivered = 0

    @property
    def state(self) -> FanoutState:
        return self._state

    # listeners

    def subscribe(
        self,
        listener: Listener,
        *,
        table: str | None = None,
        user_id: str | None = None,
    ) -> Subscription:
        with self._lock:
            sub = Subscription(self, next(self._ids), listener, table, user_id)
            self._subscriptions[sub.id] = sub
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            self._subscriptions.pop(sub.id, None)

    def listener_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    # lifecycle

    def start(self) -> None:
        """Connect the transport and start delivering.

        Raises:
            UpstreamUnavailable: The transport could not connect. State is
                DISCONNECTED and last_error is set.
        """
        with self._lock:
            if self._state != FanoutState.DISCONNECTED:
                return
            self._state = FanoutState.CONNECTING

        self._join_threads()
        self._stopping.clear()
        transport = self._transport_factory()
        try:
            transport.connect()
        except Exception as e:
            self._set_disconnected(f"{type(e).__name__}: {e}")
            logger.error(
                "realtime transport failed to connect",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )
            raise UpstreamUnavailable("realtime transport unavailable") from e

        self._transport = transport
        self._dispatch_thread = threading.Thread(
            target=self._dispatch_loop, name="realtime-dispatch", daemon=True
        )
        self._pump_thread = threading.Thread(
            target=self._pump_loop, args=(transport,), name="realtime-pump", daemon=True
        )
        with self._lock:
            self._state = FanoutState.SUBSCRIBED
            self.last_error = None
        self._dispatch_thread.start()
        self._pump_thread.start()
        logger.info("realtime fan-out subscribed")

    def stop(self, timeout: float = 5.0) -> None:
        self._stopping.set()
        transport = self._transport
        if transport is not None:
            transport.close()
        self._join_threads(timeout)
        self._transport = None
        self._set_disconnected(None)

    def _join_threads(self, timeout: float = 5.0) -> None:
        current = threading.current_thread()
        for thread in (self._pump_thread, self._dispatch_thread):
            if thread is not None and thread is not current and thread.is_alive():
                thread.join(timeout)

    def _set_disconnected(self, error: str | None) -> None:
        with self._lock:
            self._state = FanoutState.DISCONNECTED
            if error is not None:
                self.last_error = error

    # threads

    def _pump_loop(self, transport: ChangeTransport) -> None:
        try:
            for event in transport.iter_events():
                if self._stopping.is_set():
                    break
                try:
                    self._queue.put_nowait(event)
                except queue.Full:
                    self.dropped += 1
                    logger.warning(
                        "realtime queue full, event dropped",
                        extra={"extra_fields": safe_log_context(table=event.table, dropped=self.dropped)},
                    )
        except Exception as e:
            if not self._stopping.is_set():
                logger.exception("realtime transport failed")
                self._set_disconnected(f"{type(e).__name__}: {e}")
        else:
            if not self._stopping.is_set():
                logger.warning("realtime transport closed")
                self._set_disconnected("transport closed")
        finally:
            self._queue.put(_STOP)

    def _dispatch_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            self._deliver(item)

    def _deliver(self, event: ChangeEvent) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions.values())
        with bound_correlation_id():
            for sub in subscriptions:
                if not sub.matches(event):
                    continue
                try:
                    sub.listener(event)
                except Exception:
                    logger.exception(
                        "realtime listener failed",
                        extra={"extra_fields": safe_log_context(subscription=sub.id, table=event.table)},
                    )
        self.delivered += 1

    def status(self) -> dict[str, object]:
        return {
            "state": self._state.value,
            "listeners": self.listener_count(),
            "delivered": self.delivered,
            "dropped": self.dropped,
            "last_error": self.last_error,
        }
