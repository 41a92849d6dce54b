"""
worldsync client package

Client side of a real-time shared-world presence protocol: keeps a session
with a world server, reports the local participant's state on a fixed
cadence and smooths the motion of every other participant.

Main Classes:
    SessionSupervisor: Connects, joins a sub-world and owns the session
    PresenceEvents: Hooks a presentation layer subscribes to

Examples:
    # Run a headless bot (after installation)
    worldsync-client --token dev --sub-world lobby

    # Use the client programmatically
    from worldsync import SessionSupervisor, load_default_config
    session = SessionSupervisor(load_default_config())
    session.events.on_chat_message_appended.add_listener(print)
    if session.start(token="dev", local_id="bot-1", sub_world_id="lobby"):
        session.send_chat("hello")
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("worldsync-client")
except PackageNotFoundError:
    __version__ = "unknown"

from .chat_log import ChatLog, format_entry
from .config import ClientConfig, load_default_config
from .errors import ApiError, ConnectError, JoinError, WorldSyncError
from .events import EventHandler, PresenceEvents
from .session import SessionSupervisor
from .transport import ConnectionStatus, Transport, ZmqTransport
from .types import (
    ChatEntry,
    DisconnectReason,
    ParticipantInfo,
    Pose,
    Quaternion,
    SessionState,
    Vector3,
)

# Export public API
__all__ = [
    "__version__",
    # Session
    "SessionSupervisor",
    "PresenceEvents",
    "EventHandler",
    "ClientConfig",
    "load_default_config",
    # Transport
    "Transport",
    "ZmqTransport",
    "ConnectionStatus",
    # Chat
    "ChatLog",
    "format_entry",
    # Data types
    "ChatEntry",
    "DisconnectReason",
    "ParticipantInfo",
    "Pose",
    "Quaternion",
    "SessionState",
    "Vector3",
    # Errors
    "WorldSyncError",
    "ConnectError",
    "JoinError",
    "ApiError",
]
