"""
Simple event system for worldsync presentation hooks.
"""

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class EventHandler:
    """Simple event handler that manages callbacks."""

    def __init__(self, name: str = "event"):
        self.name = name
        self._callbacks: list[Callable] = []

    def add_listener(self, callback: Callable) -> Callable[[], None]:
        """Add a callback listener. Returns unsubscribe function."""
        self._callbacks.append(callback)

        def unsubscribe():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def remove_listener(self, callback: Callable) -> None:
        """Remove a callback listener."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def invoke(self, *args: Any, **kwargs: Any) -> None:
        """Invoke all registered callbacks.

        A failing callback is logged and the remaining callbacks still run.
        """
        for callback in self._callbacks[:]:
            try:
                callback(*args, **kwargs)
            except Exception:
                logger.exception(f"Listener for {self.name} raised")

    def clear(self) -> None:
        """Remove all callbacks."""
        self._callbacks.clear()

    def __len__(self) -> int:
        return len(self._callbacks)


class PresenceEvents:
    """Hooks consumed by the presentation layer.

    The client never renders anything itself; it only reports what changed.
    """

    def __init__(self):
        # (participant_id, pose, ParticipantInfo)
        self.on_participant_created = EventHandler("participant_created")
        # (participant_id, pose), first server state for the local participant
        self.on_local_spawned = EventHandler("local_spawned")
        # (participant_id)
        self.on_participant_removed = EventHandler("participant_removed")
        # (participant_id, pose), once per reconciliation step
        self.on_participant_pose_updated = EventHandler("participant_pose_updated")
        # (participant_id, text), chat bubble above a participant
        self.on_participant_chat = EventHandler("participant_chat")
        # (formatted_text)
        self.on_chat_message_appended = EventHandler("chat_message_appended")
        # (headcount, latency_ms)
        self.on_room_status_changed = EventHandler("room_status_changed")
        # (manual)
        self.on_connection_lost = EventHandler("connection_lost")
        # (message), forced disconnects only
        self.on_disconnect_notice = EventHandler("disconnect_notice")
        self.on_join_failed = EventHandler("join_failed")
        self.on_connect_failed = EventHandler("connect_failed")
        # (world_name)
        self.on_joined = EventHandler("joined")
        # (SessionState)
        self.on_state_changed = EventHandler("state_changed")

    def clear(self) -> None:
        for value in vars(self).values():
            if isinstance(value, EventHandler):
                value.clear()
