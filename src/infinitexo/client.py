"""Data access for the hosted room store. No game rules live here."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, AsyncIterator, Dict, Mapping, Optional

import httpx
import websockets

from .errors import (
    NetworkError,
    RemoteWriteError,
    RoomNotFoundError,
    StaleWriteError,
)
from .game import Room

logger = logging.getLogger(__name__)

ROOM_LINK_PATTERN = re.compile(r"/game/([a-f0-9-]+)", re.IGNORECASE)


def parse_room_ref(text: str) -> str:
    """Accept either a bare room id or a pasted room link."""

    value = text.strip()
    match = ROOM_LINK_PATTERN.search(value)
    return match.group(1) if match else value


class RoomStoreClient:
    """Async client for the room endpoints and the per-room change feed."""

    def __init__(
        self,
        base_url: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_delay: float = 0.5,
        timeout: float = 5.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.retry_delay = retry_delay
        self._http = httpx.AsyncClient(
            base_url=self.base_url, transport=transport, timeout=timeout
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "RoomStoreClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ---- helpers ----

    def room_link(self, room_id: str) -> str:
        return f"{self.base_url}/game/{room_id}"

    def _ws_url(self, room_id: str) -> str:
        url = httpx.URL(self.base_url)
        scheme = "wss" if url.scheme == "https" else "ws"
        return str(url.copy_with(scheme=scheme, path=f"/ws/rooms/{room_id}"))

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

    @staticmethod
    def _check(response: httpx.Response, room_id: Optional[str] = None) -> Dict[str, Any]:
        if response.status_code == 404 and room_id is not None:
            raise RoomNotFoundError(room_id)
        if response.status_code == 409:
            raise StaleWriteError(_detail(response), status_code=409)
        if response.is_error:
            raise RemoteWriteError(_detail(response), status_code=response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteWriteError(
                f"Store answered with a non-JSON body: {exc}",
                status_code=response.status_code,
            ) from exc

    # ---- operations ----

    async def create_room(self, player_id: str, retries: int = 1) -> str:
        """Open a room owned by ``player_id``; one retry after ``retry_delay``."""

        for attempt in range(retries + 1):
            try:
                response = await self._request(
                    "POST", "/api/rooms", json={"playerId": player_id}
                )
                payload = self._check(response)
                room_id = str(payload["room"]["id"])
                logger.info("Created room %s", room_id)
                return room_id
            except (RemoteWriteError, NetworkError) as exc:
                if attempt == retries:
                    logger.error("Could not create room: %s", exc)
                    raise
                logger.warning("Room creation failed (%s), retrying", exc)
                await asyncio.sleep(self.retry_delay)
        raise AssertionError("unreachable")

    async def fetch_room(self, room_id: str) -> Room:
        response = await self._request("GET", f"/api/rooms/{room_id}")
        return _to_room(self._check(response, room_id), response.status_code)

    async def update_room(
        self,
        room_id: str,
        fields: Mapping[str, Any],
        expected_version: Optional[int] = None,
    ) -> Room:
        """Overwrite ``fields``; pinning ``expected_version`` rejects stale writes."""

        body = dict(fields)
        if expected_version is not None:
            body["expected_version"] = expected_version
        response = await self._request("PATCH", f"/api/rooms/{room_id}", json=body)
        return _to_room(self._check(response, room_id), response.status_code)

    async def subscribe(self, room_id: str) -> AsyncIterator[Room]:
        """Yield the room after every remote write until the feed closes."""

        url = self._ws_url(room_id)
        try:
            async with websockets.connect(url) as socket:
                logger.debug("Subscribed to %s", url)
                async for message in socket:
                    try:
                        room = _to_room(json.loads(message))
                    except (ValueError, RemoteWriteError) as exc:
                        logger.warning("Skipping malformed push for %s: %s", room_id, exc)
                        continue
                    yield room
        except (OSError, websockets.WebSocketException) as exc:
            raise NetworkError(f"Change feed for {room_id} dropped: {exc}") from exc


def _to_room(record: Any, status_code: Optional[int] = None) -> Room:
    try:
        return Room.from_record(record)
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise RemoteWriteError(f"Malformed room record: {exc!r}", status_code=status_code) from exc


def _detail(response: httpx.Response) -> str:
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = None
    return str(detail or f"HTTP {response.status_code}")
