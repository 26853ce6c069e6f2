"""Session controller: one player's view of one room, plus their actions."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Protocol

from .errors import (
    NetworkError,
    RemoteWriteError,
    RoomFullError,
    RoomNotFoundError,
    StaleWriteError,
)
from .game import PLAYING, WAITING, IllegalMoveError, Player, Room, reset_fields
from .sync import POLL_INTERVAL, RoomSource, RoomSync, SyncEvent

logger = logging.getLogger(__name__)


class RoomWriter(RoomSource, Protocol):
    async def update_room(
        self, room_id: str, fields: Dict[str, Any], expected_version: Optional[int] = None
    ) -> Room: ...


class GameSession:
    """Room state and actions for ``player_id``.

    Local state only changes once a write has come back from the store (or
    from one of the sync channels), so a failed write leaves nothing to undo.
    """

    def __init__(
        self,
        client: RoomWriter,
        room_id: str,
        player_id: str,
        on_event: Optional[Callable[[SyncEvent, Room], None]] = None,
        on_notice: Optional[Callable[[str], None]] = None,
        on_change: Optional[Callable[[Room], None]] = None,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        self.client = client
        self.room_id = room_id
        self.player_id = player_id
        self.on_notice = on_notice
        self.loading = True
        self.error: Optional[str] = None
        self.active = True
        self.sync = RoomSync(
            client,
            room_id,
            on_change=on_change,
            on_event=on_event,
            poll_interval=poll_interval,
        )

    # ---- derived state ----

    @property
    def room(self) -> Optional[Room]:
        return self.sync.snapshot

    @property
    def my_role(self) -> Optional[Player]:
        return self.room.role_of(self.player_id) if self.room else None

    @property
    def is_spectator(self) -> bool:
        return self.room is not None and self.my_role is None and self.room.status == PLAYING

    @property
    def is_my_turn(self) -> bool:
        return self.room is not None and self.room.is_turn_of(self.player_id)

    # ---- lifecycle ----

    async def open(self) -> Optional[Room]:
        """Load the room and start listening for changes."""

        self.loading = True
        try:
            room = await self.client.fetch_room(self.room_id)
        except RoomNotFoundError:
            self.error = "Room not found"
            return None
        except NetworkError as exc:
            logger.warning("Could not load room %s: %s", self.room_id, exc)
            self.error = "Network error while loading the room"
            return None
        finally:
            self.loading = False
        if not self.active:
            return None
        self.sync.prime(room)
        self.sync.start()
        logger.info("Opened room %s as %s", self.room_id, self.my_role or "spectator")
        return room

    async def close(self) -> None:
        self.active = False
        await self.sync.stop()

    # ---- actions ----

    async def join(self) -> bool:
        """Take the second seat. Already seated players are left alone."""

        room = self.room
        if room is None:
            return False
        if room.role_of(self.player_id) is not None:
            return False
        if room.player_o_id is not None:
            self.error = "Room is full"
            raise RoomFullError(f"Room {room.id} already has two players")

        def fields(current: Room) -> Optional[Dict[str, Any]]:
            # Someone else may have taken the seat while we were retrying
            if current.role_of(self.player_id) is not None or current.player_o_id is not None:
                return None
            return {"player_o_id": self.player_id, "status": PLAYING}

        return await self._write(
            fields, failure="Failed to join game.", action="joining", error="Failed to join"
        )

    async def auto_join(self) -> bool:
        """Join on arrival when the creator is still waiting for an opponent."""

        room = self.room
        if room is None or room.status != WAITING or room.winner:
            return False
        if room.player_x_id == self.player_id or room.player_o_id is not None:
            return False
        return await self.join()

    async def move(self, index: int) -> bool:
        """Place a mark on ``index`` if it is this player's turn and the cell is free."""

        if not self.is_my_turn:
            return False

        def fields(current: Room) -> Optional[Dict[str, Any]]:
            if not current.is_turn_of(self.player_id):
                return None
            role = current.role_of(self.player_id)
            try:
                outcome = current.play(index, role)
            except IllegalMoveError as exc:
                logger.debug("Ignoring move on cell %d: %s", index, exc)
                return None
            if outcome.evicted is not None:
                logger.debug("%s mark on cell %d fades out", role, outcome.evicted)
            return outcome.fields()

        return await self._write(fields, failure="Failed to record move.", action="making a move")

    async def reset(self) -> bool:
        """Clear the board and hand the first turn back to X."""

        if self.room is None:
            return False
        return await self._write(
            lambda current: reset_fields(),
            failure="Failed to restart game.",
            action="restarting game",
        )

    # ---- internals ----

    async def _write(
        self,
        build: Callable[[Room], Optional[Dict[str, Any]]],
        failure: str,
        action: str,
        error: Optional[str] = None,
    ) -> bool:
        """Write ``build(snapshot)`` pinned to the snapshot's version.

        A version conflict refreshes the snapshot and rebuilds the write once
        against the fresh state; ``build`` returning None abandons it. A write
        that fails for good records ``error`` on the session, when given.
        """

        for attempt in range(2):
            current = self.room
            if current is None or not self.active:
                return False
            fields = build(current)
            if fields is None:
                return False
            try:
                updated = await self.client.update_room(
                    self.room_id, fields, expected_version=current.version
                )
            except StaleWriteError:
                if attempt == 1 or not await self._refresh():
                    self._fail(failure, error)
                    return False
                logger.info("Room %s changed underneath us, retrying %s", self.room_id, action)
                continue
            except NetworkError as exc:
                logger.warning("Network error while %s: %s", action, exc)
                self._fail(f"Network error while {action}.", error)
                return False
            except RemoteWriteError as exc:
                logger.warning("%s %s", failure, exc)
                self._fail(failure, error)
                return False
            if not self.active:
                return False
            self.sync.apply(updated)
            return True
        return False

    async def _refresh(self) -> bool:
        try:
            room = await self.client.fetch_room(self.room_id)
        except (RoomNotFoundError, NetworkError) as exc:
            logger.warning("Could not refresh room %s: %s", self.room_id, exc)
            return False
        if not self.active:
            return False
        self.sync.apply(room)
        return True

    def _fail(self, notice: str, error: Optional[str]) -> None:
        if error is not None:
            self.error = error
        self._notify(notice)

    def _notify(self, message: str) -> None:
        if self.on_notice is not None:
            self.on_notice(message)
        else:
            logger.warning(message)
