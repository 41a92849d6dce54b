"""Exception hierarchy for the worldsync client."""


class WorldSyncError(Exception):
    """Base class for worldsync errors."""


class ConnectError(WorldSyncError):
    """Raised when the world server cannot be reached or rejects the connection."""


class ApiError(WorldSyncError):
    """Raised when a request/response call fails, times out or is rejected.

    Attributes:
        code: Optional machine-readable error code sent by the server.
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        self.code = code
        super().__init__(message)


class JoinError(WorldSyncError):
    """Raised when the join handshake is rejected (bad token, world full, ...)."""
