"""Session-scoped state shared by the client components."""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .config import ClientConfig
from .events import PresenceEvents
from .transport import Transport
from .world import WorldStateMirror


@dataclass
class SessionContext:
    """Everything a component needs, handed over explicitly at construction.

    ``lock`` is the session timeline: inbound handlers, reporter ticks,
    reconciliation steps and local input all mutate state only while holding
    it. Network I/O must happen outside of it.
    """

    config: ClientConfig
    transport: Transport
    events: PresenceEvents = field(default_factory=PresenceEvents)
    clock: Callable[[], float] = time.monotonic
    lock: threading.RLock = field(default_factory=threading.RLock)
    world: WorldStateMirror | None = None
