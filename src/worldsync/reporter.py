"""Fixed-cadence reporting of the local participant's state."""

import logging

from . import protocol
from .adapters import user_state_to_wire
from .context import SessionContext
from .ticker import Ticker

logger = logging.getLogger(__name__)


class StateReporter:
    """Sends ``clientMsg/UserState`` every reporting interval.

    The cadence is wall-clock based and independent of any rendering rate.
    Nothing is sent until the local participant has spawned.
    Once stopped the reporter never ticks again.
    """

    def __init__(self, ctx: SessionContext) -> None:
        self._ctx = ctx
        self._ticker = Ticker(
            "worldsync-reporter", ctx.config.reporting_interval, self.tick
        )
        self._stopped = False
        self.ticks_sent = 0

    @property
    def is_running(self) -> bool:
        return self._ticker.is_running

    def start(self) -> None:
        if self._stopped:
            return
        self._ticker.start()

    def stop(self) -> None:
        self._stopped = True
        self._ticker.stop()

    def tick(self) -> bool:
        """Send one state report. Returns True if a message was queued."""
        with self._ctx.lock:
            if self._stopped:
                return False
            world = self._ctx.world
            if world is None or world.local is None:
                return False
            if not world.local.spawned:
                # Wait for the server to place the local participant
                return False
            payload = user_state_to_wire(world.local)

        # Fire-and-forget; a failed send is only worth a debug line
        sent = self._ctx.transport.send(protocol.MSG_USER_STATE, payload)
        if sent:
            self.ticks_sent += 1
        else:
            logger.debug("State report not sent")
        return sent
