"""Bounded chat history kept for display."""

from __future__ import annotations

from collections import deque
from typing import Generic, TypeVar

from .types import ChatEntry, ChatKind

T = TypeVar("T")

DEFAULT_CHAT_CAPACITY = 7


class ChatLog(Generic[T]):
    """Fixed-capacity FIFO. Appending past capacity evicts the oldest entry."""

    def __init__(self, capacity: int = DEFAULT_CHAT_CAPACITY) -> None:
        if capacity <= 0:
            msg = "capacity must be positive"
            raise ValueError(msg)
        self._entries: deque[T] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def append(self, entry: T) -> None:
        self._entries.append(entry)

    def entries(self) -> list[T]:
        """Return the stored entries, oldest first."""

        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def format_entry(entry: ChatEntry) -> str:
    """Render a chat log entry as the announcement line shown to the user."""

    if entry.kind is ChatKind.JOIN:
        return f"{entry.speaker_name} joined the room"
    if entry.kind is ChatKind.LEAVE:
        return f"{entry.speaker_name} left the room"
    return f"{entry.speaker_name}: {entry.text}"
