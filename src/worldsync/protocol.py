"""Frame codec for the worldsync transport.

Every ZeroMQ message exchanged with the world server is a single MessagePack
map carrying a frame type ``t`` plus type-specific fields:

* ``req``  – client request: ``sn`` (serial number), ``name``, ``body``
* ``res``  – server response: ``sn``, ``ok`` and either ``body`` or ``err``
* ``msg``  – one-way message in either direction: ``name``, ``body``
* ``ping`` / ``pong`` – heartbeat request and answer: ``sn``
* ``bye``  – server is closing the connection: optional ``reason``

Message and API names below are the ones used by the world server.
"""

from __future__ import annotations

from typing import Any

import msgpack

# Frame types
FRAME_REQUEST = "req"
FRAME_RESPONSE = "res"
FRAME_MESSAGE = "msg"
FRAME_PING = "ping"
FRAME_PONG = "pong"
FRAME_BYE = "bye"

FRAME_TYPES = frozenset(
    {FRAME_REQUEST, FRAME_RESPONSE, FRAME_MESSAGE, FRAME_PING, FRAME_PONG, FRAME_BYE}
)

# Server -> client messages
MSG_CHAT = "serverMsg/Chat"
MSG_USER_STATES = "serverMsg/UserStates"
MSG_USER_JOIN = "serverMsg/UserJoin"
MSG_USER_EXIT = "serverMsg/UserExit"

# Client -> server messages
MSG_USER_STATE = "clientMsg/UserState"

# Request/response APIs
API_JOIN_SUB_WORLD = "JoinSubWorld"
API_SEND_CHAT = "SendChat"


def encode_frame(frame: dict[str, Any]) -> bytes:
    """Encode a frame dictionary using MessagePack."""
    return msgpack.packb(frame, use_bin_type=True)


def decode_frame(data: bytes) -> dict[str, Any] | None:
    """Decode a frame, returning ``None`` for anything that is not a valid frame."""
    if not data:
        return None
    try:
        frame = msgpack.unpackb(data, raw=False)
    except Exception:
        return None
    if not isinstance(frame, dict) or frame.get("t") not in FRAME_TYPES:
        return None
    return frame


def request_frame(sn: int, name: str, body: dict[str, Any]) -> bytes:
    return encode_frame({"t": FRAME_REQUEST, "sn": sn, "name": name, "body": body})


def message_frame(name: str, body: dict[str, Any]) -> bytes:
    return encode_frame({"t": FRAME_MESSAGE, "name": name, "body": body})


def ping_frame(sn: int) -> bytes:
    return encode_frame({"t": FRAME_PING, "sn": sn})


def pong_frame(sn: int) -> bytes:
    return encode_frame({"t": FRAME_PONG, "sn": sn})


def response_frame(
    sn: int, body: dict[str, Any] | None = None, err: str | None = None
) -> bytes:
    """Build a response frame (used by servers and test doubles)."""
    frame: dict[str, Any] = {"t": FRAME_RESPONSE, "sn": sn, "ok": err is None}
    if err is None:
        frame["body"] = body or {}
    else:
        frame["err"] = err
    return encode_frame(frame)


def bye_frame(reason: str = "") -> bytes:
    return encode_frame({"t": FRAME_BYE, "reason": reason})
