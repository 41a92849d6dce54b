"""
Session supervisor: connection lifecycle, join, and teardown policy.

State machine::

    IDLE -> CONNECTING -> JOINING -> JOINED -> DISCONNECTED(MANUAL | FORCED)
                 |            |
                 +------------+--> DISCONNECTED(FORCED)

``DISCONNECTED`` is terminal; reconnecting means creating a new supervisor.
Nothing is retried internally.
"""

import logging
import time
from collections.abc import Callable

from . import protocol
from .adapters import chat_request_to_wire
from .chat_log import ChatLog
from .config import ClientConfig
from .context import SessionContext
from .dispatcher import InboundDispatcher
from .errors import ApiError, ConnectError, JoinError
from .events import PresenceEvents
from .handshake import JoinHandshake
from .reconciler import ParticipantReconciler
from .reporter import StateReporter
from .ticker import Ticker
from .transport import Transport, ZmqTransport
from .types import (
    ChatEntry,
    DisconnectReason,
    LocalParticipant,
    Pose,
    Quaternion,
    SessionState,
    Vector3,
)
from .world import WorldStateMirror

logger = logging.getLogger(__name__)

CONNECTION_LOST_NOTICE = "Connection lost, please sign in again"


class SessionSupervisor:
    """
    Client session with one world server.

    Design: ``start()`` blocks through connect and join on the caller's
    thread; afterwards inbound messages, the state reporter, the reconciler and
    the room status ticker run in the background until ``leave()`` or an
    involuntary disconnect. The presentation layer observes everything through
    ``events``.
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: Transport | None = None,
        events: PresenceEvents | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if transport is None:
            transport = ZmqTransport(
                endpoint=config.endpoint,
                connect_timeout=config.connect_timeout,
                call_timeout=config.call_timeout,
                heartbeat_interval=config.heartbeat_interval,
                heartbeat_timeout=config.heartbeat_timeout,
                queue_max=config.outbound_queue_max,
            )
        self.ctx = SessionContext(
            config=config,
            transport=transport,
            events=events if events is not None else PresenceEvents(),
            clock=clock,
        )

        self.chat_log: ChatLog[ChatEntry] = ChatLog(config.chat_capacity)
        self.reconciler = ParticipantReconciler(self.ctx)
        self.reporter = StateReporter(self.ctx)
        self.dispatcher = InboundDispatcher(self.ctx, self.reconciler, self.chat_log)
        self._handshake = JoinHandshake(transport, timeout=config.call_timeout)
        self._room_status = Ticker(
            "worldsync-room-status", config.room_status_interval, self.publish_room_status
        )

        self._state = SessionState.IDLE
        self._disconnect_reason: DisconnectReason | None = None
        self._error_message: str | None = None
        self._unsubscribe_disconnect: Callable[[], None] | None = None

    # Properties
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def disconnect_reason(self) -> DisconnectReason | None:
        """MANUAL or FORCED once disconnected, otherwise None."""
        return self._disconnect_reason

    @property
    def error_message(self) -> str | None:
        """Human-readable reason of a connect/join failure."""
        return self._error_message

    @property
    def events(self) -> PresenceEvents:
        return self.ctx.events

    @property
    def transport(self) -> Transport:
        return self.ctx.transport

    @property
    def world(self) -> WorldStateMirror | None:
        return self.ctx.world

    @property
    def endpoint(self) -> str:
        return self.ctx.transport.endpoint

    @property
    def last_heartbeat_latency(self) -> float | None:
        return self.ctx.transport.last_heartbeat_latency

    @property
    def local_participant(self) -> LocalParticipant | None:
        world = self.ctx.world
        return world.local if world is not None else None

    def chat_entries(self) -> list[ChatEntry]:
        with self.ctx.lock:
            return self.chat_log.entries()

    # Lifecycle

    def start(
        self,
        token: str,
        local_id: str,
        sub_world_id: str,
        timestamp: float | None = None,
    ) -> bool:
        """Connect and join. Returns True once joined.

        Failures are reported through ``events.on_connect_failed`` /
        ``events.on_join_failed`` and leave the session DISCONNECTED(FORCED).
        """
        with self.ctx.lock:
            if self._state is not SessionState.IDLE:
                raise RuntimeError(f"Session already started ({self._state.value})")
            self._set_state(SessionState.CONNECTING)

        logger.info(f"Connecting to {self.endpoint}")
        try:
            self.ctx.transport.connect()
        except ConnectError as e:
            self._fail(f"Failed to connect to server: {e}", self.events.on_connect_failed)
            return False

        with self.ctx.lock:
            if self._state is not SessionState.CONNECTING:
                # leave() was called while connecting
                self.ctx.transport.disconnect(manual=True)
                return False
            self._set_state(SessionState.JOINING)
            self._unsubscribe_disconnect = self.ctx.transport.add_disconnect_listener(
                self._on_transport_disconnected
            )

        if timestamp is None:
            timestamp = int(time.time() * 1000)
        try:
            result = self._handshake.join(token, local_id, timestamp, sub_world_id)
        except JoinError as e:
            self._fail(f"Failed to join sub-world: {e}", self.events.on_join_failed)
            return False

        with self.ctx.lock:
            if self._state is not SessionState.JOINING:
                return False
            # A drop while JOINING is not seen by _on_transport_disconnected
            connected = self.ctx.transport.is_connected
            if connected:
                local = LocalParticipant(participant_id=result.current_user.participant_id)
                self.ctx.world = WorldStateMirror(result.world_state, local)
                self.dispatcher.register()
                self._set_state(SessionState.JOINED)
                # Started under the lock so a concurrent teardown cannot miss them
                self.reporter.start()
                self.reconciler.start()
                self._room_status.start()

        if not connected:
            self._fail("Failed to join sub-world: connection lost", self.events.on_join_failed)
            return False

        self.events.on_joined.invoke(result.world_state.name)
        self.publish_room_status()
        return True

    def leave(self) -> None:
        """User-initiated teardown. Surfaces no notice."""
        with self.ctx.lock:
            if self._state is SessionState.DISCONNECTED:
                return
            was_joined = self._state is SessionState.JOINED
            self._disconnect_reason = DisconnectReason.MANUAL
            self._set_state(SessionState.DISCONNECTED)

        logger.info("Leaving session")
        self._teardown(close_transport=True, manual=True)
        if was_joined:
            self.events.on_connection_lost.invoke(True)

    def close(self) -> None:
        """Alias for leave()."""
        self.leave()

    def _on_transport_disconnected(self, manual: bool) -> None:
        with self.ctx.lock:
            if self._state is not SessionState.JOINED:
                # Connect/join failures and leave() handle their own teardown
                return
            self._disconnect_reason = (
                DisconnectReason.MANUAL if manual else DisconnectReason.FORCED
            )
            self._set_state(SessionState.DISCONNECTED)

        logger.warning(f"Session disconnected by transport (manual={manual})")
        self._teardown(close_transport=False, manual=manual)
        self.events.on_connection_lost.invoke(manual)
        if not manual:
            self.events.on_disconnect_notice.invoke(CONNECTION_LOST_NOTICE)

    def _fail(self, message: str, hook) -> None:
        with self.ctx.lock:
            if self._state is SessionState.DISCONNECTED:
                return
            self._error_message = message
            self._disconnect_reason = DisconnectReason.FORCED
            self._set_state(SessionState.DISCONNECTED)

        logger.error(message)
        self._teardown(close_transport=True, manual=False)
        hook.invoke(message)

    def _teardown(self, close_transport: bool, manual: bool) -> None:
        """Release every background activity. Must run without holding the lock."""
        self.reporter.stop()
        self._room_status.stop()
        self.reconciler.stop()
        self.dispatcher.unregister()
        if self._unsubscribe_disconnect is not None:
            self._unsubscribe_disconnect()
            self._unsubscribe_disconnect = None
        if close_transport:
            self.ctx.transport.disconnect(manual=manual)

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        logger.debug(f"Session state -> {state.value}")
        self.events.on_state_changed.invoke(state)

    # Room status

    def publish_room_status(self) -> None:
        """Report headcount and heartbeat latency to the presentation layer."""
        with self.ctx.lock:
            world = self.ctx.world
            if world is None or self._state is not SessionState.JOINED:
                return
            headcount = world.headcount()
        self.events.on_room_status_changed.invoke(
            headcount, self.ctx.transport.last_heartbeat_latency
        )

    # Chat

    def send_chat(self, text: str) -> str | None:
        """Send a chat line.

        Returns None when the server accepted it, otherwise the original text
        so the caller can put it back into its input field.
        """
        if not text:
            return None
        with self.ctx.lock:
            joined = self._state is SessionState.JOINED
        if not joined:
            return text
        try:
            self.ctx.transport.call(protocol.API_SEND_CHAT, chat_request_to_wire(text))
        except ApiError as e:
            logger.warning(f"Chat message not sent: {e}")
            return text
        return None

    # Local input

    def set_local_animation_state(self, animation_state: str) -> bool:
        """Set the local animation (e.g. idle, walking, wave, punch)."""
        with self.ctx.lock:
            local = self.local_participant
            if local is None:
                return False
            local.animation_state = animation_state
            return True

    def set_local_pose(
        self, position: Vector3 | None = None, rotation: Quaternion | None = None
    ) -> bool:
        with self.ctx.lock:
            local = self.local_participant
            if local is None:
                return False
            local.pose = Pose(
                position=position if position is not None else local.pose.position,
                rotation=rotation if rotation is not None else local.pose.rotation,
            )
            return True

    def face_direction(self, yaw_degrees: float) -> bool:
        """Turn the local participant to ``yaw_degrees`` around the Y axis."""
        return self.set_local_pose(rotation=Quaternion.from_yaw(yaw_degrees))
