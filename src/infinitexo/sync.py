"""Merge the push feed and the polling fallback into one local room snapshot."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Callable, List, Optional, Protocol, Tuple

from .errors import InfiniteXOError
from .game import PLAYING, WAITING, Room

logger = logging.getLogger(__name__)

POLL_INTERVAL = 1.5


class SyncEvent(str, enum.Enum):
    MARK_PLACED = "mark_placed"
    MARK_EVICTED = "mark_evicted"
    WIN = "win"
    PLAYER_JOINED = "player_joined"
    GAME_RESET = "game_reset"


class RoomSource(Protocol):
    async def fetch_room(self, room_id: str) -> Room: ...

    def subscribe(self, room_id: str) -> AsyncIterator[Room]: ...


@dataclass
class Markers:
    """What the last accepted snapshot looked like, for delta detection."""

    move_count: int = 0
    last_order: int = -1
    winner: Optional[str] = None
    status: Optional[str] = None

    @classmethod
    def of(cls, room: Room) -> "Markers":
        return cls(
            move_count=len(room.moves),
            last_order=room.last_order(),
            winner=room.winner,
            status=room.status,
        )


def fingerprint(room: Room) -> Tuple[object, ...]:
    return (
        len(room.moves),
        room.last_order(),
        room.status,
        room.current_player,
        room.winner,
        room.player_o_id,
        room.version,
    )


def diff(markers: Markers, room: Room) -> List[SyncEvent]:
    """Events implied by moving from ``markers`` to ``room``."""

    events: List[SyncEvent] = []
    count = len(room.moves)
    last_order = room.last_order()
    if count > markers.move_count or (count and last_order > markers.last_order):
        events.append(SyncEvent.MARK_PLACED)
        # A full hand swaps a mark rather than adding one
        if count <= markers.move_count:
            events.append(SyncEvent.MARK_EVICTED)
    elif count == 0 and markers.move_count > 0:
        events.append(SyncEvent.GAME_RESET)
    if room.winner and not markers.winner:
        events.append(SyncEvent.WIN)
    if markers.status == WAITING and room.status == PLAYING:
        events.append(SyncEvent.PLAYER_JOINED)
    return events


class RoomSync:
    """Keeps the local snapshot of one room.

    Both channels, and the session's own confirmed writes, go through
    :meth:`apply`, so the same record arriving twice fires its events once.
    """

    def __init__(
        self,
        source: RoomSource,
        room_id: str,
        on_change: Optional[Callable[[Room], None]] = None,
        on_event: Optional[Callable[[SyncEvent, Room], None]] = None,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        self.source = source
        self.room_id = room_id
        self.on_change = on_change
        self.on_event = on_event
        self.poll_interval = poll_interval
        self.snapshot: Optional[Room] = None
        self.markers = Markers()
        self.active = False
        self._tasks: List[asyncio.Task] = []

    # ---- reducer ----

    def prime(self, room: Room) -> None:
        """Adopt the initial load without firing events."""
        self.snapshot = room
        self.markers = Markers.of(room)

    def differs(self, room: Room) -> bool:
        return self.snapshot is None or fingerprint(room) != fingerprint(self.snapshot)

    def apply(self, room: Room) -> List[SyncEvent]:
        if room.id != self.room_id:
            logger.warning("Ignoring record for room %s in sync of %s", room.id, self.room_id)
            return []
        if self.snapshot is not None and room.version < self.snapshot.version:
            logger.debug("Ignoring stale version %d of room %s", room.version, room.id)
            return []
        events = diff(self.markers, room)
        changed = self.differs(room)
        self.markers = Markers.of(room)
        self.snapshot = room
        if changed and self.on_change is not None:
            self.on_change(room)
        if self.on_event is not None:
            for event in events:
                self.on_event(event, room)
        return events

    # ---- channels ----

    async def poll_once(self) -> List[SyncEvent]:
        room = await self.source.fetch_room(self.room_id)
        if not self.active or not self.differs(room):
            return []
        return self.apply(room)

    async def _poll_loop(self) -> None:
        while self.active:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.poll_once()
            except InfiniteXOError as exc:
                logger.debug("Poll of room %s failed: %s", self.room_id, exc)
            except Exception:
                logger.exception("Unexpected error polling room %s", self.room_id)

    async def _push_loop(self) -> None:
        try:
            async for room in self.source.subscribe(self.room_id):
                if not self.active:
                    break
                logger.debug("Push update for room %s (version %d)", room.id, room.version)
                self.apply(room)
        except InfiniteXOError as exc:
            logger.warning("Change feed lost (%s); falling back to polling", exc)

    def start(self) -> None:
        if self.active:
            return
        self.active = True
        self._tasks = [
            asyncio.ensure_future(self._poll_loop()),
            asyncio.ensure_future(self._push_loop()),
        ]

    async def stop(self) -> None:
        self.active = False
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
