"""Tests for routing inbound server messages onto the world-state mirror."""

import pytest

from worldsync import protocol
from worldsync.adapters import SERVER_MESSAGE_NAMES
from worldsync.chat_log import ChatLog
from worldsync.context import SessionContext
from worldsync.dispatcher import InboundDispatcher
from worldsync.reconciler import ParticipantReconciler
from worldsync.types import (
    LocalParticipant,
    ParticipantInfo,
    Pose,
    Vector3,
    WorldState,
)
from worldsync.world import WorldStateMirror

from conftest import state_entry, user


@pytest.fixture
def ctx(config, transport, clock):
    context = SessionContext(config=config, transport=transport, clock=clock)
    world = WorldState(
        "world-1",
        "Lobby",
        users=[
            ParticipantInfo("me", "Me"),
            ParticipantInfo("alice", "Alice", visual_id=2),
        ],
    )
    context.world = WorldStateMirror(world, LocalParticipant(participant_id="me"))
    transport.connect()
    return context


@pytest.fixture
def reconciler(ctx):
    return ParticipantReconciler(ctx)


@pytest.fixture
def chat_log():
    return ChatLog(capacity=7)


@pytest.fixture
def dispatcher(ctx, reconciler, chat_log):
    d = InboundDispatcher(ctx, reconciler, chat_log)
    d.register()
    yield d
    d.unregister()


@pytest.fixture
def recorded(ctx):
    calls = {}
    for name in (
        "on_participant_created",
        "on_participant_removed",
        "on_participant_chat",
        "on_chat_message_appended",
    ):
        calls[name] = []
        getattr(ctx.events, name).add_listener(
            lambda *args, _name=name: calls[_name].append(args)
        )
    return calls


class TestRegistration:
    def test_subscribes_every_server_message(self, dispatcher, transport):
        assert dispatcher.is_registered
        for name in SERVER_MESSAGE_NAMES:
            assert transport.subscriber_count(name) == 1

    def test_register_twice_subscribes_once(self, dispatcher, transport):
        dispatcher.register()
        assert transport.subscriber_count() == len(SERVER_MESSAGE_NAMES)

    def test_unregister_releases_subscriptions(self, dispatcher, transport):
        dispatcher.unregister()
        assert not dispatcher.is_registered
        assert transport.subscriber_count() == 0


class TestBatchedState:
    def test_first_sighting_creates_remote_at_pose(self, dispatcher, ctx, transport, recorded):
        transport.emit(protocol.MSG_USER_STATES, {"userStates": {"alice": state_entry(1, 0, 2)}})

        remote = ctx.world.remotes["alice"]
        assert remote.display_name == "Alice"
        assert remote.visual_id == 2
        assert remote.rendered_pose.position == Vector3(1, 0, 2)
        assert len(recorded["on_participant_created"]) == 1
        participant_id, pose, info = recorded["on_participant_created"][0]
        assert participant_id == "alice"
        assert pose.position == Vector3(1, 0, 2)
        assert info.display_name == "Alice"

    def test_unknown_participant_gets_placeholder_name(self, dispatcher, ctx, transport):
        transport.emit(protocol.MSG_USER_STATES, {"userStates": {"ghost": state_entry()}})
        assert ctx.world.remotes["ghost"].display_name == "???"

    def test_later_snapshot_starts_reconciliation(self, dispatcher, ctx, transport, reconciler, recorded):
        transport.emit(protocol.MSG_USER_STATES, {"userStates": {"alice": state_entry(0, 0, 0)}})
        transport.emit(
            protocol.MSG_USER_STATES, {"userStates": {"alice": state_entry(4, 0, 0, "walking")}}
        )

        remote = ctx.world.remotes["alice"]
        assert remote.animation_state == "walking"
        # Rendered pose is not snapped; the reconciler moves it
        assert remote.rendered_pose.position == Vector3(0, 0, 0)
        task = reconciler.get_task("alice")
        assert task.goal_pose.position == Vector3(4, 0, 0)
        assert len(recorded["on_participant_created"]) == 1

    def test_first_local_state_spawns_local_participant(self, dispatcher, ctx, transport, recorded):
        spawned = []
        ctx.events.on_local_spawned.add_listener(lambda pid, pose: spawned.append((pid, pose)))

        transport.emit(
            protocol.MSG_USER_STATES,
            {"userStates": {"me": state_entry(7, 0, 9, "sit"), "alice": state_entry()}},
        )

        local = ctx.world.local
        assert local.spawned
        assert local.pose.position == Vector3(7, 0, 9)
        assert local.animation_state == "sit"
        assert spawned == [("me", local.pose)]
        assert "me" not in ctx.world.remotes
        assert [c[0] for c in recorded["on_participant_created"]] == ["alice"]
        assert dispatcher.get_stats()["self_states_ignored"] == 0

    def test_local_participant_is_never_overwritten(self, dispatcher, ctx, transport, reconciler, recorded):
        """Once spawned, snapshots echoing our own id do not touch the local participant."""
        ctx.world.local.spawned = True
        local_pose = Pose(Vector3(9, 9, 9))
        ctx.world.local.pose = local_pose
        ctx.world.local.animation_state = "wave"

        transport.emit(
            protocol.MSG_USER_STATES,
            {"userStates": {"me": state_entry(0, 0, 0, "idle"), "alice": state_entry()}},
        )

        assert ctx.world.local.pose == local_pose
        assert ctx.world.local.animation_state == "wave"
        assert "me" not in ctx.world.remotes
        assert reconciler.get_task("me") is None
        assert [c[0] for c in recorded["on_participant_created"]] == ["alice"]
        assert dispatcher.get_stats()["self_states_ignored"] == 1

    def test_malformed_snapshot_is_dropped(self, dispatcher, ctx, transport):
        transport.emit(protocol.MSG_USER_STATES, {"userStates": "garbage"})
        assert ctx.world.remotes == {}
        assert dispatcher.get_stats()["messages_dropped"] == 1

    def test_every_malformed_message_is_counted(self, dispatcher, transport):
        transport.emit(protocol.MSG_USER_STATES, {"userStates": "garbage"})
        transport.emit(protocol.MSG_CHAT, {"content": "no speaker"})
        stats = dispatcher.get_stats()
        assert stats["messages_dropped"] == 2
        assert stats["messages_handled"] == 0


class TestChat:
    def test_chat_from_remote(self, dispatcher, transport, chat_log, recorded):
        transport.emit(protocol.MSG_USER_STATES, {"userStates": {"alice": state_entry()}})
        transport.emit(protocol.MSG_CHAT, {"user": user("alice", "Alice"), "content": "hi"})

        assert [e.text for e in chat_log.entries()] == ["hi"]
        assert recorded["on_chat_message_appended"] == [("Alice: hi",)]
        assert recorded["on_participant_chat"] == [("alice", "hi")]

    def test_chat_from_local(self, dispatcher, transport, recorded):
        transport.emit(protocol.MSG_CHAT, {"user": user("me", "Me"), "content": "yo"})
        assert recorded["on_participant_chat"] == [("me", "yo")]

    def test_chat_from_unseen_speaker_only_logged(self, dispatcher, transport, chat_log, recorded):
        transport.emit(protocol.MSG_CHAT, {"user": user("zed", "Zed"), "content": "boo"})
        assert len(chat_log) == 1
        assert recorded["on_participant_chat"] == []

    def test_three_messages_into_full_log(self, dispatcher, transport, chat_log):
        for i in range(7):
            transport.emit(protocol.MSG_CHAT, {"user": user("alice"), "content": f"old {i}"})
        for text in ("x", "y", "z"):
            transport.emit(protocol.MSG_CHAT, {"user": user("alice"), "content": text})

        assert [e.text for e in chat_log.entries()] == [
            "old 3",
            "old 4",
            "old 5",
            "old 6",
            "x",
            "y",
            "z",
        ]


class TestJoinExit:
    def test_user_join_updates_roster_and_announces(self, dispatcher, ctx, transport, recorded):
        transport.emit(protocol.MSG_USER_JOIN, {"user": user("carol", "Carol", 5)})

        assert ctx.world.roster["carol"].visual_id == 5
        assert recorded["on_chat_message_appended"] == [("Carol joined the room",)]
        # The entity only appears with its first state snapshot
        assert "carol" not in ctx.world.remotes

        transport.emit(protocol.MSG_USER_STATES, {"userStates": {"carol": state_entry()}})
        assert ctx.world.remotes["carol"].display_name == "Carol"

    def test_user_exit_destroys_entity_and_task(self, dispatcher, ctx, transport, reconciler, recorded):
        transport.emit(protocol.MSG_USER_STATES, {"userStates": {"alice": state_entry()}})
        transport.emit(protocol.MSG_USER_STATES, {"userStates": {"alice": state_entry(1)}})
        assert reconciler.get_task("alice") is not None

        transport.emit(protocol.MSG_USER_EXIT, {"user": user("alice", "Alice")})

        assert "alice" not in ctx.world.remotes
        assert "alice" not in ctx.world.roster
        assert reconciler.get_task("alice") is None
        assert recorded["on_participant_removed"] == [("alice",)]
        assert recorded["on_chat_message_appended"][-1] == ("Alice left the room",)

    def test_exit_uses_roster_name_when_payload_has_none(self, dispatcher, transport, recorded):
        transport.emit(protocol.MSG_USER_EXIT, {"user": {"uid": "alice"}})
        assert recorded["on_chat_message_appended"] == [("Alice left the room",)]
        assert recorded["on_participant_removed"] == []

    def test_exit_then_reappear_creates_fresh_entity(self, dispatcher, ctx, transport, reconciler, recorded):
        transport.emit(protocol.MSG_USER_STATES, {"userStates": {"alice": state_entry(1)}})
        transport.emit(protocol.MSG_USER_STATES, {"userStates": {"alice": state_entry(2)}})
        first = ctx.world.remotes["alice"]

        transport.emit(protocol.MSG_USER_EXIT, {"user": user("alice", "Alice")})
        transport.emit(protocol.MSG_USER_STATES, {"userStates": {"alice": state_entry(7)}})

        second = ctx.world.remotes["alice"]
        assert second is not first
        assert second.rendered_pose.position == Vector3(7, 0, 0)
        assert reconciler.get_task("alice") is None
        assert len(recorded["on_participant_created"]) == 2


class TestBeforeJoin:
    def test_messages_before_join_are_ignored(self, dispatcher, ctx, transport, chat_log):
        ctx.world = None
        transport.emit(protocol.MSG_CHAT, {"user": user("alice"), "content": "early"})
        assert len(chat_log) == 0
