"""Shared fixtures: an in-memory stand-in for the room store client."""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Dict, List, Optional

import pytest

from infinitexo.errors import NetworkError, RemoteWriteError, RoomNotFoundError, StaleWriteError
from infinitexo.game import Room


class FakeRoomClient:
    """Implements the client surface the session and sync layer rely on."""

    def __init__(self) -> None:
        self.rooms: Dict[str, Room] = {}
        self.writes: List[Dict[str, Any]] = []
        self.fail_next: Optional[Exception] = None
        self.fail_fetch: Optional[Exception] = None
        self.fetches = 0
        self.feed: "asyncio.Queue[Room] | None" = None

    def add_room(self, **fields: Any) -> Room:
        room_id = fields.pop("id", None) or str(uuid.uuid4())
        room = Room(id=room_id, version=1, **fields)
        self.rooms[room_id] = room
        return room

    def overwrite(self, room_id: str, fields: Dict[str, Any]) -> Room:
        """Simulate another client writing the room."""
        current = self.rooms[room_id]
        room = current.with_fields({**fields, "version": current.version + 1})
        self.rooms[room_id] = room
        return room

    async def create_room(self, player_id: str, retries: int = 1) -> str:
        return self.add_room(player_x_id=player_id).id

    async def fetch_room(self, room_id: str) -> Room:
        self.fetches += 1
        if self.fail_fetch is not None:
            exc, self.fail_fetch = self.fail_fetch, None
            raise exc
        try:
            return self.rooms[room_id]
        except KeyError as exc:
            raise RoomNotFoundError(room_id) from exc

    async def update_room(
        self,
        room_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Room:
        if self.fail_next is not None:
            exc, self.fail_next = self.fail_next, None
            raise exc
        if room_id not in self.rooms:
            raise RoomNotFoundError(room_id)
        current = self.rooms[room_id]
        if expected_version is not None and expected_version != current.version:
            raise StaleWriteError("stale", status_code=409)
        self.writes.append(dict(fields))
        return self.overwrite(room_id, fields)

    async def subscribe(self, room_id: str):
        if self.feed is None:
            raise NetworkError("no change feed")
        while True:
            yield await self.feed.get()

    def room_link(self, room_id: str) -> str:
        return f"http://test/game/{room_id}"


@pytest.fixture
def fake_client() -> FakeRoomClient:
    return FakeRoomClient()


@pytest.fixture
def failures():
    """Exceptions a write can fail with."""
    return {
        "store": RemoteWriteError("boom", status_code=500),
        "network": NetworkError("connection refused"),
    }
