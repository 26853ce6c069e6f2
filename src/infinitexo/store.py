"""In-memory room store with per-room change notifications.

Stands in for the hosted row store: rooms are plain records, updates are
field overwrites (last writer wins unless the caller pins a version), and
every write is pushed to the room's subscribers as a full record.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .errors import RoomNotFoundError, StaleWriteError
from .models import RoomRecord

logger = logging.getLogger(__name__)

ROOM_TTL_SECONDS = 60 * 30  # 30 minutes


@dataclass(eq=False)
class Subscription:
    """A subscriber's inbox; filled from whichever loop performed the write."""

    room_id: str
    loop: asyncio.AbstractEventLoop = field(repr=False)
    queue: "asyncio.Queue[Dict[str, Any]]" = field(default_factory=asyncio.Queue, repr=False)

    def deliver(self, payload: Dict[str, Any]) -> None:
        try:
            self.loop.call_soon_threadsafe(self.queue.put_nowait, payload)
        except RuntimeError:
            # Subscriber's loop already closed
            logger.debug("Dropping notification for closed subscriber on %s", self.room_id)

    async def get(self) -> Dict[str, Any]:
        return await self.queue.get()


@dataclass
class _Entry:
    record: RoomRecord
    touched_at: float = field(default_factory=time.time)


class RoomStore:
    def __init__(self, ttl: float = ROOM_TTL_SECONDS) -> None:
        self.ttl = ttl
        self._rooms: Dict[str, _Entry] = {}
        self._subscribers: Dict[str, List[Subscription]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._rooms)

    def _cleanup(self) -> None:
        """Drop idle rooms that nobody is watching."""

        now = time.time()
        expired = [
            room_id
            for room_id, entry in list(self._rooms.items())
            if not self._subscribers.get(room_id) and now - entry.touched_at >= self.ttl
        ]
        for room_id in expired:
            self._rooms.pop(room_id, None)
            logger.info("Expired idle room %s", room_id)

    def _entry(self, room_id: str) -> _Entry:
        try:
            return self._rooms[room_id]
        except KeyError as exc:
            raise RoomNotFoundError(room_id) from exc

    async def insert(self, player_x_id: str) -> RoomRecord:
        async with self._lock:
            self._cleanup()
            room_id = str(uuid.uuid4())
            while room_id in self._rooms:
                room_id = str(uuid.uuid4())
            record = RoomRecord(id=room_id, player_x_id=player_x_id)
            self._rooms[room_id] = _Entry(record=record)
        logger.info("Created room %s", room_id)
        return record

    async def get(self, room_id: str) -> RoomRecord:
        async with self._lock:
            self._cleanup()
            return self._entry(room_id).record

    async def update(
        self,
        room_id: str,
        fields: Mapping[str, Any],
        expected_version: Optional[int] = None,
    ) -> RoomRecord:
        """Overwrite ``fields`` and notify subscribers with the full record."""

        async with self._lock:
            self._cleanup()
            entry = self._entry(room_id)
            current = entry.record
            if expected_version is not None and expected_version != current.version:
                raise StaleWriteError(
                    f"Room {room_id!r} is at version {current.version}, "
                    f"write expected {expected_version}",
                    status_code=409,
                )
            data = current.model_dump()
            data.update(fields)
            data["id"] = current.id
            data["version"] = current.version + 1
            record = RoomRecord.model_validate(data)
            entry.record = record
            entry.touched_at = time.time()
            subscribers = list(self._subscribers.get(room_id, ()))

        payload = record.model_dump(mode="json")
        for subscription in subscribers:
            subscription.deliver(payload)
        logger.debug(
            "Room %s updated to version %d (%s), %d subscriber(s)",
            room_id,
            record.version,
            ", ".join(sorted(fields)),
            len(subscribers),
        )
        return record

    async def subscribe(self, room_id: str) -> Subscription:
        async with self._lock:
            self._entry(room_id)
            subscription = Subscription(room_id=room_id, loop=asyncio.get_running_loop())
            self._subscribers.setdefault(room_id, []).append(subscription)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        async with self._lock:
            subscribers = self._subscribers.get(subscription.room_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(subscription.room_id, None)
