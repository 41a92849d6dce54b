"""Client-side mirror of the joined sub-world."""

from __future__ import annotations

from .types import LocalParticipant, ParticipantInfo, RemoteParticipant, WorldState


class WorldStateMirror:
    """Roster metadata plus the participant entities known to this client.

    ``roster`` holds what the server told us about each user (name, visual id).
    ``remotes`` holds the entities actually shown, which are created lazily on
    the first batched state mentioning a user.
    """

    def __init__(self, world: WorldState, local: LocalParticipant) -> None:
        self.world_id = world.world_id
        self.world_name = world.name
        self.roster: dict[str, ParticipantInfo] = {
            info.participant_id: info for info in world.users
        }
        self.local = local
        self.remotes: dict[str, RemoteParticipant] = {}

    @property
    def local_id(self) -> str:
        return self.local.participant_id

    def is_local(self, participant_id: str) -> bool:
        return participant_id == self.local.participant_id

    def add_to_roster(self, info: ParticipantInfo) -> None:
        self.roster[info.participant_id] = info

    def remove_from_roster(self, participant_id: str) -> ParticipantInfo | None:
        return self.roster.pop(participant_id, None)

    def roster_info(self, participant_id: str) -> ParticipantInfo:
        """Roster metadata for ``participant_id``, or a placeholder if unknown."""
        info = self.roster.get(participant_id)
        if info is None:
            return ParticipantInfo(participant_id=participant_id)
        return info

    def headcount(self) -> int:
        """Number of participants currently shown, including ourselves."""
        return len(self.remotes) + 1
