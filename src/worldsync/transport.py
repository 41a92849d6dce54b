"""
Transport session to a single world server.

:class:`Transport` defines the contract the session supervisor relies on
(connect, request/response calls, fire-and-forget sends, per-name
subscriptions and a disconnect notification). :class:`ZmqTransport` implements
it over a ZeroMQ DEALER socket exchanging MessagePack frames (see
:mod:`worldsync.protocol`).
"""

import itertools
import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum
from queue import Empty, Full, Queue
from typing import Any

# Dynamic ZMQ import based on environment variable
env_is_green = os.environ.get("WORLDSYNC_USE_ZMQ_GREEN", "")
if env_is_green.lower() == "true":
    import zmq.green as zmq
else:
    import zmq

from . import protocol
from .errors import ApiError, ConnectError
from .events import EventHandler

logger = logging.getLogger(__name__)

MessageHandler = Callable[[dict[str, Any]], None]


class ConnectionStatus(Enum):
    CLOSED = "closed"
    OPENING = "opening"
    OPENED = "opened"
    CLOSING = "closing"


class Transport(ABC):
    """Bidirectional connection to one world server endpoint.

    Subclasses implement the network side; subscription bookkeeping and the
    disconnect notification live here so every transport behaves the same.
    Inbound messages of one name reach their handlers in arrival order.
    """

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        self._status = ConnectionStatus.CLOSED
        self._last_heartbeat_latency: float | None = None
        self._subscribers: dict[str, list[MessageHandler]] = {}
        self._subscribers_lock = threading.Lock()
        self._disconnect_notified = False
        self.on_disconnected = EventHandler("transport_disconnected")

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status is ConnectionStatus.OPENED

    @property
    def last_heartbeat_latency(self) -> float | None:
        """Round-trip time of the latest heartbeat in milliseconds."""
        return self._last_heartbeat_latency

    @abstractmethod
    def connect(self) -> None:
        """Open the connection. Raises :class:`ConnectError` on failure."""

    @abstractmethod
    def disconnect(self, manual: bool = True) -> None:
        """Close the connection. Safe to call when already closed."""

    @abstractmethod
    def call(
        self, name: str, payload: dict[str, Any], timeout: float | None = None
    ) -> dict[str, Any]:
        """Send a request and wait for its response. Raises :class:`ApiError`."""

    @abstractmethod
    def send(self, name: str, payload: dict[str, Any]) -> bool:
        """Fire-and-forget message. Returns False if it could not be queued."""

    def subscribe(self, name: str, handler: MessageHandler) -> Callable[[], None]:
        """Register ``handler`` for inbound messages called ``name``. Returns unsubscribe function."""
        with self._subscribers_lock:
            self._subscribers.setdefault(name, []).append(handler)

        def unsubscribe():
            with self._subscribers_lock:
                handlers = self._subscribers.get(name)
                if handlers and handler in handlers:
                    handlers.remove(handler)
                    if not handlers:
                        del self._subscribers[name]

        return unsubscribe

    def subscriber_count(self, name: str | None = None) -> int:
        with self._subscribers_lock:
            if name is not None:
                return len(self._subscribers.get(name, ()))
            return sum(len(handlers) for handlers in self._subscribers.values())

    def add_disconnect_listener(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """``callback(manual)`` runs once each time an open connection closes."""
        return self.on_disconnected.add_listener(callback)

    def _dispatch_message(self, name: str, body: Any) -> None:
        with self._subscribers_lock:
            handlers = list(self._subscribers.get(name, ()))
        if not handlers:
            logger.debug(f"Ignoring message without subscriber: {name}")
            return
        for handler in handlers:
            try:
                handler(body)
            except Exception:
                logger.exception(f"Handler for {name} raised")

    def _notify_disconnected(self, manual: bool) -> None:
        if self._disconnect_notified:
            return
        self._disconnect_notified = True
        logger.info(f"Disconnected from {self.endpoint} (manual={manual})")
        self.on_disconnected.invoke(manual)


class _PendingCall:
    __slots__ = ("name", "done", "body", "error")

    def __init__(self, name: str):
        self.name = name
        self.done = threading.Event()
        self.body: dict[str, Any] | None = None
        self.error: str | None = None


class ZmqTransport(Transport):
    """
    ZeroMQ DEALER transport.

    A single I/O thread owns the socket: it receives and dispatches inbound
    frames, drains the outbound queue filled by ``send``/``call``, and runs the
    heartbeat. Losing the heartbeat or receiving a ``bye`` frame closes the
    connection and notifies listeners with ``manual=False``.
    """

    POLL_INTERVAL_MS = 10
    OPENING_PING_INTERVAL = 0.2
    MAX_TRACKED_PINGS = 16

    def __init__(
        self,
        endpoint: str = "tcp://localhost:5555",
        connect_timeout: float = 5.0,
        call_timeout: float = 10.0,
        heartbeat_interval: float = 3.0,
        heartbeat_timeout: float = 10.0,
        queue_max: int = 1000,
    ):
        super().__init__(endpoint)
        self.connect_timeout = connect_timeout
        self.call_timeout = call_timeout
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_timeout = heartbeat_timeout

        # ZeroMQ context and socket (socket is used by the I/O thread only)
        self._context: zmq.Context | None = None
        self._socket: zmq.Socket | None = None

        # Threading
        self._lock = threading.RLock()
        self._io_thread: threading.Thread | None = None
        self._io_stop = threading.Event()
        self._opened = threading.Event()
        self._outbound: Queue = Queue(maxsize=queue_max)

        # Request/heartbeat bookkeeping
        self._serial = itertools.count(1)
        self._pending: dict[int, _PendingCall] = {}
        self._pings_sent: dict[int, float] = {}
        self._last_ping_at = 0.0
        self._last_pong_at = 0.0
        self._close_reason: str | None = None

        self._stats = {
            "frames_received": 0,
            "frames_sent": 0,
            "frames_dropped": 0,
            "invalid_frames": 0,
        }

    def connect(self) -> None:
        with self._lock:
            if self._status is ConnectionStatus.OPENED:
                return
            if self._status is not ConnectionStatus.CLOSED:
                raise ConnectError(f"Cannot connect while {self._status.value}")

            self._status = ConnectionStatus.OPENING
            self._disconnect_notified = False
            self._close_reason = None
            self._io_stop.clear()
            self._opened.clear()
            self._drain_outbound()

            try:
                self._context = zmq.Context()
                self._socket = self._context.socket(zmq.DEALER)
                self._socket.setsockopt(zmq.LINGER, 0)
                self._socket.connect(self.endpoint)
            except zmq.ZMQError as e:
                self._cleanup_socket()
                self._status = ConnectionStatus.CLOSED
                raise ConnectError(f"Invalid endpoint {self.endpoint}: {e}") from e

            self._io_thread = threading.Thread(
                target=self._io_loop, name="worldsync-io", daemon=True
            )
            self._io_thread.start()

            # The connection counts as open once the first pong arrives
            self._send_ping()

        if not self._opened.wait(self.connect_timeout):
            with self._lock:
                self._status = ConnectionStatus.CLOSING
            self._shutdown(notify=False)
            raise ConnectError(
                f"Server {self.endpoint} unreachable "
                f"(no answer within {self.connect_timeout:.1f}s)"
            )
        if self._status is not ConnectionStatus.OPENED:
            raise ConnectError(
                f"Connection to {self.endpoint} closed during handshake: "
                f"{self._close_reason or 'unknown reason'}"
            )
        logger.info(f"Connected to {self.endpoint}")

    def disconnect(self, manual: bool = True) -> None:
        with self._lock:
            if self._status is ConnectionStatus.CLOSED:
                return
            was_open = self._status is ConnectionStatus.OPENED
            self._status = ConnectionStatus.CLOSING
        self._shutdown(notify=was_open, manual=manual)

    def call(
        self, name: str, payload: dict[str, Any], timeout: float | None = None
    ) -> dict[str, Any]:
        if self._status is not ConnectionStatus.OPENED:
            raise ApiError(f"Cannot call {name}: not connected")

        sn = next(self._serial)
        pending = _PendingCall(name)
        self._pending[sn] = pending
        try:
            self._outbound.put_nowait(protocol.request_frame(sn, name, payload))
        except Full:
            self._pending.pop(sn, None)
            raise ApiError(f"Cannot call {name}: outbound queue full") from None

        wait = self.call_timeout if timeout is None else timeout
        if not pending.done.wait(wait):
            self._pending.pop(sn, None)
            raise ApiError(f"Request {name} timed out after {wait:.1f}s")
        if pending.error is not None:
            raise ApiError(pending.error)
        return pending.body or {}

    def send(self, name: str, payload: dict[str, Any]) -> bool:
        if self._status is not ConnectionStatus.OPENED:
            return False
        try:
            self._outbound.put_nowait(protocol.message_frame(name, payload))
            return True
        except Full:
            self._stats["frames_dropped"] += 1
            logger.debug(f"Outbound queue full, dropping {name}")
            return False

    def get_stats(self) -> dict[str, Any]:
        """Get diagnostic statistics."""
        return self._stats.copy()

    # I/O thread

    def _io_loop(self) -> None:
        poller = zmq.Poller()
        poller.register(self._socket, zmq.POLLIN)

        while not self._io_stop.is_set():
            try:
                socks = dict(poller.poll(self.POLL_INTERVAL_MS))
                if self._socket in socks:
                    self._receive_all()
                self._flush_outbound()
                self._check_heartbeat()
            except zmq.ZMQError as e:
                if not self._io_stop.is_set():
                    logger.error(f"Transport I/O error: {e}")
                    self._close_reason = str(e)
                    self._io_stop.set()

        self._cleanup_socket()

        # Closed from the I/O side: heartbeat loss, server bye or socket error
        with self._lock:
            was_open = self._status is ConnectionStatus.OPENED
            lost = was_open or self._status is ConnectionStatus.OPENING
            if lost:
                self._status = ConnectionStatus.CLOSED
        if lost:
            logger.warning(
                f"Connection to {self.endpoint} lost: {self._close_reason or 'closed'}"
            )
            self._fail_pending("Disconnected from server")
            # Wakes a connect() still waiting for its first pong
            self._opened.set()
            if was_open:
                self._notify_disconnected(manual=False)

    def _receive_all(self) -> None:
        while True:
            try:
                data = self._socket.recv(zmq.NOBLOCK)
            except zmq.Again:
                return
            self._stats["frames_received"] += 1
            frame = protocol.decode_frame(data)
            if frame is None:
                self._stats["invalid_frames"] += 1
                logger.warning("Dropping undecodable frame from server")
                continue
            self._handle_frame(frame)

    def _handle_frame(self, frame: dict[str, Any]) -> None:
        frame_type = frame["t"]

        if frame_type == protocol.FRAME_PONG:
            sent_at = self._pings_sent.pop(frame.get("sn"), None)
            now = time.monotonic()
            self._last_pong_at = now
            if sent_at is not None:
                self._last_heartbeat_latency = round((now - sent_at) * 1000.0, 1)
            if self._status is ConnectionStatus.OPENING:
                with self._lock:
                    if self._status is ConnectionStatus.OPENING:
                        self._status = ConnectionStatus.OPENED
                self._opened.set()
        elif frame_type == protocol.FRAME_PING:
            self._socket.send(protocol.pong_frame(frame.get("sn", 0)), zmq.NOBLOCK)
        elif frame_type == protocol.FRAME_RESPONSE:
            pending = self._pending.pop(frame.get("sn"), None)
            if pending is None:
                logger.debug(f"Response for unknown request sn={frame.get('sn')}")
                return
            if frame.get("ok"):
                body = frame.get("body")
                pending.body = body if isinstance(body, dict) else {}
            else:
                pending.error = str(frame.get("err") or f"{pending.name} failed")
            pending.done.set()
        elif frame_type == protocol.FRAME_MESSAGE:
            name = frame.get("name")
            if not isinstance(name, str):
                self._stats["invalid_frames"] += 1
                logger.warning("Dropping message frame without a name")
                return
            self._dispatch_message(name, frame.get("body"))
        elif frame_type == protocol.FRAME_BYE:
            self._close_reason = f"server closed connection: {frame.get('reason') or 'no reason'}"
            self._io_stop.set()

    def _flush_outbound(self) -> None:
        while True:
            try:
                data = self._outbound.get_nowait()
            except Empty:
                return
            try:
                self._socket.send(data, zmq.NOBLOCK)
                self._stats["frames_sent"] += 1
            except zmq.Again:
                self._stats["frames_dropped"] += 1
                logger.debug("Socket not writable, dropping outbound frame")

    def _check_heartbeat(self) -> None:
        now = time.monotonic()
        if self._status is ConnectionStatus.OPENING:
            # The first ping is dropped while the peer is not connected yet
            if now - self._last_ping_at >= self.OPENING_PING_INTERVAL:
                self._send_ping()
            return
        if self._status is not ConnectionStatus.OPENED:
            return
        if now - self._last_pong_at > self.heartbeat_timeout:
            self._close_reason = f"no heartbeat for {self.heartbeat_timeout:.1f}s"
            self._io_stop.set()
            return
        if now - self._last_ping_at >= self.heartbeat_interval:
            self._send_ping()

    def _send_ping(self) -> None:
        sn = next(self._serial)
        now = time.monotonic()
        self._last_ping_at = now
        if len(self._pings_sent) >= self.MAX_TRACKED_PINGS:
            self._pings_sent.clear()
        self._pings_sent[sn] = now
        try:
            self._outbound.put_nowait(protocol.ping_frame(sn))
        except Full:
            logger.debug("Outbound queue full, skipping heartbeat")

    # Teardown

    def _shutdown(self, notify: bool, manual: bool = True) -> None:
        self._io_stop.set()
        thread = self._io_thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=1.0)
        with self._lock:
            self._status = ConnectionStatus.CLOSED
        self._fail_pending("Disconnected")
        self._drain_outbound()
        self._pings_sent.clear()
        if notify:
            self._notify_disconnected(manual)

    def _fail_pending(self, reason: str) -> None:
        pending, self._pending = self._pending, {}
        for call in pending.values():
            call.error = reason
            call.done.set()

    def _drain_outbound(self) -> None:
        while True:
            try:
                self._outbound.get_nowait()
            except Empty:
                return

    def _cleanup_socket(self) -> None:
        """Clean up ZeroMQ resources."""
        if self._socket:
            self._socket.close()
            self._socket = None
        if self._context:
            self._context.term()
            self._context = None
