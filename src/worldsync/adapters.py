"""
Adapters for converting between snake_case Python types and the camelCase wire protocol.

Inbound payloads are validated with pydantic models before conversion; a
payload that does not match raises :class:`pydantic.ValidationError` and is
dropped by the dispatcher.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from . import protocol
from .types import (
    JoinResult,
    LocalParticipant,
    ParticipantInfo,
    ParticipantState,
    Pose,
    Quaternion,
    Vector3,
    WorldState,
)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)


class WireVector(_WireModel):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


class WireQuaternion(_WireModel):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    w: float = 1.0


class WireUser(_WireModel):
    uid: str
    name: str = "???"
    visual_id: int = Field(0, alias="visualId")


class WireUserState(_WireModel):
    uid: str
    ani_state: str = Field("idle", alias="aniState")
    pos: WireVector = Field(default_factory=WireVector)
    rotation: WireQuaternion = Field(default_factory=WireQuaternion)


class WireChat(_WireModel):
    user: WireUser
    content: str


class WireUserStates(_WireModel):
    user_states: dict[str, WireUserState] = Field(alias="userStates")


class WireUserEvent(_WireModel):
    user: WireUser


class WireSubWorldData(_WireModel):
    id: str = ""
    name: str
    users: list[WireUser] = Field(default_factory=list)


class WireJoinResponse(_WireModel):
    current_user: WireUser = Field(alias="currentUser")
    sub_world_data: WireSubWorldData = Field(alias="subWorldData")


# Typed inbound messages


@dataclass
class ChatMessage:
    speaker: ParticipantInfo
    text: str


@dataclass
class BatchedStateMessage:
    states: list[ParticipantState]


@dataclass
class UserJoinMessage:
    user: ParticipantInfo


@dataclass
class UserExitMessage:
    user: ParticipantInfo


ServerMessage = ChatMessage | BatchedStateMessage | UserJoinMessage | UserExitMessage


def vector_to_wire(v: Vector3) -> dict[str, float]:
    return {"x": v.x, "y": v.y, "z": v.z}


def quaternion_to_wire(q: Quaternion) -> dict[str, float]:
    return {"x": q.x, "y": q.y, "z": q.z, "w": q.w}


def _user_from_wire(user: WireUser) -> ParticipantInfo:
    return ParticipantInfo(
        participant_id=user.uid, display_name=user.name, visual_id=user.visual_id
    )


def _pose_from_wire(state: WireUserState) -> Pose:
    return Pose(
        position=Vector3(state.pos.x, state.pos.y, state.pos.z),
        rotation=Quaternion(
            state.rotation.x, state.rotation.y, state.rotation.z, state.rotation.w
        ),
    )


def chat_from_wire(data: dict[str, Any]) -> ChatMessage:
    wire = WireChat.model_validate(data)
    return ChatMessage(speaker=_user_from_wire(wire.user), text=wire.content)


def user_states_from_wire(data: dict[str, Any]) -> BatchedStateMessage:
    """Convert a batched state update.

    The map key is authoritative for the participant id; the ``uid`` inside
    the entry may be omitted.
    """
    states = []
    raw_states = data.get("userStates") if isinstance(data, dict) else None
    if isinstance(raw_states, dict):
        data = {
            "userStates": {
                uid: {"uid": uid, **entry} if isinstance(entry, dict) else entry
                for uid, entry in raw_states.items()
            }
        }
    wire = WireUserStates.model_validate(data)
    for uid, entry in wire.user_states.items():
        states.append(
            ParticipantState(
                participant_id=uid,
                animation_state=entry.ani_state,
                pose=_pose_from_wire(entry),
            )
        )
    return BatchedStateMessage(states=states)


def user_join_from_wire(data: dict[str, Any]) -> UserJoinMessage:
    return UserJoinMessage(user=_user_from_wire(WireUserEvent.model_validate(data).user))


def user_exit_from_wire(data: dict[str, Any]) -> UserExitMessage:
    return UserExitMessage(user=_user_from_wire(WireUserEvent.model_validate(data).user))


# Wire name -> decoder for every inbound message the client understands
SERVER_MESSAGE_DECODERS: dict[str, Callable[[dict[str, Any]], ServerMessage]] = {
    protocol.MSG_CHAT: chat_from_wire,
    protocol.MSG_USER_STATES: user_states_from_wire,
    protocol.MSG_USER_JOIN: user_join_from_wire,
    protocol.MSG_USER_EXIT: user_exit_from_wire,
}

SERVER_MESSAGE_NAMES = frozenset(SERVER_MESSAGE_DECODERS)


def join_request_to_wire(
    token: str, local_id: str, timestamp: float, sub_world_id: str
) -> dict[str, Any]:
    return {
        "token": token,
        "uid": local_id,
        "time": timestamp,
        "subWorldId": sub_world_id,
    }


def join_result_from_wire(data: dict[str, Any]) -> JoinResult:
    wire = WireJoinResponse.model_validate(data)
    world = wire.sub_world_data
    return JoinResult(
        current_user=_user_from_wire(wire.current_user),
        world_state=WorldState(
            world_id=world.id,
            name=world.name,
            users=[_user_from_wire(u) for u in world.users],
        ),
    )


def user_state_to_wire(local: LocalParticipant) -> dict[str, Any]:
    """Convert the local participant into the outbound UserState payload."""
    return {
        "aniState": local.animation_state,
        "pos": vector_to_wire(local.pose.position),
        "rotation": quaternion_to_wire(local.pose.rotation),
    }


def chat_request_to_wire(text: str) -> dict[str, Any]:
    return {"content": text}
