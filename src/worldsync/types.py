"""
Data types for the worldsync client.

All types use snake_case naming conventions; the camelCase wire format is
handled in :mod:`worldsync.adapters`.
"""

import math
from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class Vector3:
    """3D position."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def distance_to(self, other: "Vector3") -> float:
        dx = self.x - other.x
        dy = self.y - other.y
        dz = self.z - other.z
        return math.sqrt(dx * dx + dy * dy + dz * dz)


@dataclass(frozen=True)
class Quaternion:
    """Rotation quaternion (x, y, z, w)."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    w: float = 1.0

    @classmethod
    def from_yaw(cls, degrees: float) -> "Quaternion":
        """Rotation of ``degrees`` around the Y axis."""
        half = math.radians(degrees) / 2.0
        return cls(0.0, math.sin(half), 0.0, math.cos(half))


@dataclass(frozen=True)
class Pose:
    """Position and rotation of a participant."""

    position: Vector3 = field(default_factory=Vector3)
    rotation: Quaternion = field(default_factory=Quaternion)


@dataclass
class ParticipantInfo:
    """Roster metadata for a participant, as announced by the world server."""

    participant_id: str
    display_name: str = "???"
    visual_id: int = 0


@dataclass
class ParticipantState:
    """One entry of a batched state update."""

    participant_id: str
    animation_state: str
    pose: Pose


@dataclass
class LocalParticipant:
    """The participant controlled by this client.

    The server's first state for it places the spawn point (``spawned``);
    after that it is never written from the network.
    """

    participant_id: str
    animation_state: str = "idle"
    pose: Pose = field(default_factory=Pose)
    spawned: bool = False


@dataclass
class RemoteParticipant:
    """A participant controlled by another client.

    ``rendered_pose`` is the interpolated value actually shown; it trails the
    latest received pose by at most one reconciliation window.
    """

    participant_id: str
    display_name: str
    visual_id: int
    rendered_pose: Pose
    animation_state: str = "idle"


class ChatKind(Enum):
    MESSAGE = "message"
    JOIN = "join"
    LEAVE = "leave"


@dataclass(frozen=True)
class ChatEntry:
    """A line of the chat log; join/leave announcements carry an empty text."""

    speaker_name: str
    text: str = ""
    kind: ChatKind = ChatKind.MESSAGE


@dataclass
class WorldState:
    """Initial state of a sub-world returned by the join handshake."""

    world_id: str
    name: str
    users: list[ParticipantInfo] = field(default_factory=list)


@dataclass
class JoinResult:
    current_user: ParticipantInfo
    world_state: WorldState


class SessionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    JOINING = "joining"
    JOINED = "joined"
    DISCONNECTED = "disconnected"


class DisconnectReason(Enum):
    MANUAL = "manual"
    FORCED = "forced"
