"""
Routing of inbound world server messages onto the world-state mirror.

Each wire name in :data:`worldsync.adapters.SERVER_MESSAGE_NAMES` is decoded
into a typed message and handed to exactly one handler, on the session
timeline. Unknown names never reach this module (the transport has no
subscriber for them); malformed payloads are logged and dropped.
"""

import logging
from collections.abc import Callable
from typing import Any, get_args

from pydantic import ValidationError

from .adapters import (
    SERVER_MESSAGE_DECODERS,
    BatchedStateMessage,
    ChatMessage,
    ServerMessage,
    UserExitMessage,
    UserJoinMessage,
)
from .chat_log import ChatLog, format_entry
from .context import SessionContext
from .reconciler import ParticipantReconciler
from .types import ChatEntry, ChatKind, ParticipantState, RemoteParticipant

logger = logging.getLogger(__name__)


class InboundDispatcher:
    def __init__(
        self,
        ctx: SessionContext,
        reconciler: ParticipantReconciler,
        chat_log: ChatLog[ChatEntry],
    ) -> None:
        self._ctx = ctx
        self._reconciler = reconciler
        self._chat_log = chat_log
        self._unsubscribers: list[Callable[[], None]] = []

        self._handlers: dict[type, Callable[[Any], None]] = {
            ChatMessage: self._handle_chat,
            BatchedStateMessage: self._handle_batched_state,
            UserJoinMessage: self._handle_user_join,
            UserExitMessage: self._handle_user_exit,
        }
        if set(self._handlers) != set(get_args(ServerMessage)):
            raise TypeError("InboundDispatcher must handle every ServerMessage type")

        self._stats = {
            "messages_handled": 0,
            "messages_dropped": 0,
            "self_states_ignored": 0,
        }

    @property
    def is_registered(self) -> bool:
        return bool(self._unsubscribers)

    def register(self) -> None:
        """Subscribe to every known server message on the transport."""
        if self._unsubscribers:
            return
        for name, decoder in SERVER_MESSAGE_DECODERS.items():
            self._unsubscribers.append(
                self._ctx.transport.subscribe(name, self._make_receiver(name, decoder))
            )

    def unregister(self) -> None:
        unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()

    def get_stats(self) -> dict[str, int]:
        with self._ctx.lock:
            return self._stats.copy()

    def _make_receiver(
        self, name: str, decoder: Callable[[dict[str, Any]], ServerMessage]
    ) -> Callable[[Any], None]:
        def receive(payload: Any) -> None:
            try:
                message = decoder(payload)
            except ValidationError as e:
                with self._ctx.lock:
                    self._stats["messages_dropped"] += 1
                logger.warning(f"Dropping malformed {name}: {e.error_count()} invalid field(s)")
                return
            self.dispatch(message)

        return receive

    def dispatch(self, message: ServerMessage) -> None:
        """Apply a decoded message to the world-state mirror."""
        handler = self._handlers[type(message)]
        with self._ctx.lock:
            if self._ctx.world is None:
                logger.debug(f"Ignoring {type(message).__name__} before join")
                return
            handler(message)
            self._stats["messages_handled"] += 1

    # Handlers (called on the session timeline)

    def _handle_chat(self, message: ChatMessage) -> None:
        world = self._ctx.world
        speaker_id = message.speaker.participant_id
        self._append_chat(ChatEntry(message.speaker.display_name, message.text))
        if speaker_id in world.remotes or world.is_local(speaker_id):
            self._ctx.events.on_participant_chat.invoke(speaker_id, message.text)

    def _handle_batched_state(self, message: BatchedStateMessage) -> None:
        for state in message.states:
            if self._ctx.world.is_local(state.participant_id):
                if not self._ctx.world.local.spawned:
                    self._spawn_local(state)
                else:
                    # The local participant is self-authoritative once spawned
                    self._stats["self_states_ignored"] += 1
                continue
            self._apply_remote_state(state)

    def _spawn_local(self, state: ParticipantState) -> None:
        local = self._ctx.world.local
        local.pose = state.pose
        local.animation_state = state.animation_state
        local.spawned = True
        logger.debug(f"Local participant {state.participant_id} spawned")
        self._ctx.events.on_local_spawned.invoke(state.participant_id, state.pose)

    def _apply_remote_state(self, state: ParticipantState) -> None:
        world = self._ctx.world
        participant = world.remotes.get(state.participant_id)

        if participant is None:
            info = world.roster_info(state.participant_id)
            participant = RemoteParticipant(
                participant_id=state.participant_id,
                display_name=info.display_name,
                visual_id=info.visual_id,
                rendered_pose=state.pose,
                animation_state=state.animation_state,
            )
            world.remotes[state.participant_id] = participant
            logger.debug(f"Participant {state.participant_id} appeared")
            self._ctx.events.on_participant_created.invoke(
                state.participant_id, state.pose, info
            )
            return

        participant.animation_state = state.animation_state
        self._reconciler.submit(participant, state.pose)

    def _handle_user_join(self, message: UserJoinMessage) -> None:
        self._ctx.world.add_to_roster(message.user)
        logger.info(f"{message.user.display_name} ({message.user.participant_id}) joined")
        self._append_chat(ChatEntry(message.user.display_name, kind=ChatKind.JOIN))

    def _handle_user_exit(self, message: UserExitMessage) -> None:
        world = self._ctx.world
        participant_id = message.user.participant_id
        info = world.remove_from_roster(participant_id)
        self._reconciler.cancel(participant_id)
        if world.remotes.pop(participant_id, None) is not None:
            self._ctx.events.on_participant_removed.invoke(participant_id)

        name = message.user.display_name
        if name == "???" and info is not None:
            name = info.display_name
        logger.info(f"{name} ({participant_id}) left")
        self._append_chat(ChatEntry(name, kind=ChatKind.LEAVE))

    def _append_chat(self, entry: ChatEntry) -> None:
        self._chat_log.append(entry)
        self._ctx.events.on_chat_message_appended.invoke(format_entry(entry))
