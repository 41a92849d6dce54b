"""One-shot join of a sub-world."""

import logging

from pydantic import ValidationError

from . import protocol
from .adapters import join_request_to_wire, join_result_from_wire
from .errors import ApiError, JoinError
from .transport import Transport
from .types import JoinResult

logger = logging.getLogger(__name__)


class JoinHandshake:
    """Authenticates the local participant into a sub-world.

    A handshake may be attempted once. Any failure is final for the session;
    retrying means starting a new session.
    """

    def __init__(self, transport: Transport, timeout: float | None = None) -> None:
        self._transport = transport
        self._timeout = timeout
        self._attempted = False

    @property
    def attempted(self) -> bool:
        return self._attempted

    def join(
        self, token: str, local_id: str, timestamp: float, sub_world_id: str
    ) -> JoinResult:
        """Run the handshake.

        Raises:
            RuntimeError: If called twice.
            JoinError: If the transport is not connected, the server rejects
                the join or the call fails.
        """
        if self._attempted:
            raise RuntimeError("Join handshake already attempted for this session")
        self._attempted = True
        if not self._transport.is_connected:
            raise JoinError("Connection closed before joining")

        request = join_request_to_wire(token, local_id, timestamp, sub_world_id)
        try:
            body = self._transport.call(
                protocol.API_JOIN_SUB_WORLD, request, timeout=self._timeout
            )
        except ApiError as e:
            raise JoinError(str(e)) from e

        try:
            result = join_result_from_wire(body)
        except ValidationError as e:
            raise JoinError(f"Malformed join response: {e.error_count()} invalid field(s)") from e

        logger.info(
            f"Joined sub-world '{result.world_state.name}' as {result.current_user.participant_id} "
            f"({len(result.world_state.users)} users in roster)"
        )
        return result
