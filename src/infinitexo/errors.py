"""Error types shared by the room store, its client and the session controller."""

from __future__ import annotations


class InfiniteXOError(Exception):
    """Base class for recoverable room errors; none of them is fatal."""


class RoomNotFoundError(InfiniteXOError):
    """The room id does not resolve to a stored room."""

    def __init__(self, room_id: str) -> None:
        super().__init__(f"Room {room_id!r} not found")
        self.room_id = room_id


class RoomFullError(InfiniteXOError):
    """A third identity tried to join an already paired room."""


class RemoteWriteError(InfiniteXOError):
    """The store rejected a create or update."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StaleWriteError(RemoteWriteError):
    """The write carried an outdated version and was not applied."""


class NetworkError(InfiniteXOError):
    """Transport-level failure talking to the store."""
