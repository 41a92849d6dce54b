"""Shared fixtures: an in-memory transport, a manual clock and default config."""

from dataclasses import replace
from typing import Any

import pytest

from worldsync import protocol
from worldsync.config import ClientConfig, load_default_config
from worldsync.errors import ApiError, ConnectError
from worldsync.transport import ConnectionStatus, Transport


class FakeTransport(Transport):
    """Transport double driven directly by the test.

    ``responses`` maps API names to a response body or to an exception
    instance that ``call`` raises.
    """

    def __init__(self, endpoint: str = "tcp://fake:5555", connect_error: str | None = None):
        super().__init__(endpoint)
        self.connect_error = connect_error
        self.responses: dict[str, Any] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.connect_attempts = 0
        self.disconnect_calls: list[bool] = []
        self.send_result = True

    def connect(self) -> None:
        self.connect_attempts += 1
        if self.connect_error is not None:
            raise ConnectError(self.connect_error)
        self._status = ConnectionStatus.OPENED
        self._disconnect_notified = False
        self._last_heartbeat_latency = 12.5

    def disconnect(self, manual: bool = True) -> None:
        self.disconnect_calls.append(manual)
        if self._status is ConnectionStatus.CLOSED:
            return
        self._status = ConnectionStatus.CLOSED
        self._notify_disconnected(manual)

    def call(self, name, payload, timeout=None):
        self.calls.append((name, payload))
        if not self.is_connected:
            raise ApiError(f"Cannot call {name}: not connected")
        response = self.responses.get(name, {})
        if isinstance(response, Exception):
            raise response
        return response

    def send(self, name, payload):
        if not self.is_connected or not self.send_result:
            return False
        self.sent.append((name, payload))
        return True

    # Test controls

    def emit(self, name: str, payload: Any) -> None:
        """Deliver an inbound message as if it came from the server."""
        self._dispatch_message(name, payload)

    def drop(self) -> None:
        """Simulate an involuntary connection loss."""
        self._status = ConnectionStatus.CLOSED
        self._notify_disconnected(manual=False)

    def sent_named(self, name: str) -> list[dict[str, Any]]:
        return [payload for sent_name, payload in self.sent if sent_name == name]


class ManualClock:
    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


def user(uid: str, name: str | None = None, visual_id: int = 0) -> dict[str, Any]:
    return {"uid": uid, "name": name or uid.capitalize(), "visualId": visual_id}


def join_response(
    local_id: str = "me",
    world_name: str = "Lobby",
    users: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return {
        "currentUser": user(local_id),
        "subWorldData": {
            "id": "world-1",
            "name": world_name,
            "users": users if users is not None else [user(local_id), user("alice"), user("bob")],
        },
    }


def state_entry(x: float = 0.0, y: float = 0.0, z: float = 0.0, ani: str = "idle") -> dict[str, Any]:
    return {
        "aniState": ani,
        "pos": {"x": x, "y": y, "z": z},
        "rotation": {"x": 0.0, "y": 0.0, "z": 0.0, "w": 1.0},
    }


@pytest.fixture
def config() -> ClientConfig:
    # Long intervals keep background tickers out of the way; tests step by hand
    return replace(
        load_default_config(),
        reporting_interval=0.1,
        reconciliation_duration=0.1,
        reconcile_step_interval=60.0,
        room_status_interval=60.0,
    )


@pytest.fixture
def transport() -> FakeTransport:
    fake = FakeTransport()
    fake.responses[protocol.API_JOIN_SUB_WORLD] = join_response()
    return fake


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()
