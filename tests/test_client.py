"""Tests for the HTTP room store client."""

from __future__ import annotations

import asyncio
import socket

import httpx
import pytest
import uvicorn

from infinitexo.client import RoomStoreClient, parse_room_ref
from infinitexo.errors import NetworkError, RemoteWriteError, RoomNotFoundError, StaleWriteError
from infinitexo.ui import app

ROOM_ID = "0f8fad5b-d9cb-469f-a165-70867728950e"


def _asgi_client():
    return RoomStoreClient("http://testserver", transport=httpx.ASGITransport(app=app))


def _room_payload(**fields):
    room = {
        "id": ROOM_ID,
        "moves": [],
        "current_player": "X",
        "winner": None,
        "player_x_id": "alice",
        "player_o_id": None,
        "status": "waiting",
        "version": 1,
    }
    room.update(fields)
    return room


def test_create_fetch_and_update_against_app():
    async def scenario():
        async with _asgi_client() as rooms:
            room_id = await rooms.create_room("alice")
            room = await rooms.fetch_room(room_id)
            assert room.player_x_id == "alice"
            assert room.status == "waiting"

            joined = await rooms.update_room(
                room_id,
                {"player_o_id": "bob", "status": "playing"},
                expected_version=room.version,
            )
            assert joined.player_o_id == "bob"
            assert joined.version == room.version + 1

            with pytest.raises(StaleWriteError):
                await rooms.update_room(room_id, {"winner": "X"}, expected_version=room.version)

            with pytest.raises(RoomNotFoundError):
                await rooms.fetch_room("missing")

    asyncio.run(scenario())


def test_create_retries_once_after_failure():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(500, json={"detail": "unavailable"})
        return httpx.Response(200, json={"room": _room_payload(), "joinUrl": ""})

    async def scenario():
        async with RoomStoreClient(
            "http://testserver", transport=httpx.MockTransport(handler), retry_delay=0
        ) as rooms:
            return await rooms.create_room("alice")

    assert asyncio.run(scenario()) == ROOM_ID
    assert len(calls) == 2


def test_create_gives_up_after_second_failure():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("refused", request=request)

    async def scenario():
        async with RoomStoreClient(
            "http://testserver", transport=httpx.MockTransport(handler), retry_delay=0
        ) as rooms:
            await rooms.create_room("alice")

    with pytest.raises(NetworkError):
        asyncio.run(scenario())
    assert len(calls) == 2


def test_store_rejection_is_a_remote_write_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"detail": "read only"})

    async def scenario():
        async with RoomStoreClient(
            "http://testserver", transport=httpx.MockTransport(handler)
        ) as rooms:
            await rooms.update_room(ROOM_ID, {"status": "playing"})

    with pytest.raises(RemoteWriteError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.status_code == 503
    assert "read only" in str(excinfo.value)


def test_update_sends_expected_version():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_room_payload(status="playing", version=2))

    async def scenario():
        async with RoomStoreClient(
            "http://testserver", transport=httpx.MockTransport(handler)
        ) as rooms:
            return await rooms.update_room(ROOM_ID, {"status": "playing"}, expected_version=1)

    room = asyncio.run(scenario())
    assert room.status == "playing"
    assert seen[0].method == "PATCH"
    assert seen[0].url.path == f"/api/rooms/{ROOM_ID}"
    assert b'"expected_version":1' in seen[0].content.replace(b" ", b"")


def test_links_and_refs():
    rooms = RoomStoreClient("https://ttt.example/")
    link = rooms.room_link(ROOM_ID)
    assert link == f"https://ttt.example/game/{ROOM_ID}"
    assert parse_room_ref(link) == ROOM_ID
    assert parse_room_ref(f"  {ROOM_ID}\n") == ROOM_ID
    assert rooms._ws_url(ROOM_ID) == f"wss://ttt.example/ws/rooms/{ROOM_ID}"
    asyncio.run(rooms.aclose())


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>captive portal</html>", headers={"content-type": "text/html"}),
        httpx.Response(200, json={"id": ROOM_ID}),
        httpx.Response(200, json=["not", "a", "room"]),
    ],
)
def test_unreadable_room_body_is_a_remote_error(response):
    def handler(request: httpx.Request) -> httpx.Response:
        return response

    async def scenario():
        async with RoomStoreClient(
            "http://testserver", transport=httpx.MockTransport(handler)
        ) as rooms:
            await rooms.fetch_room(ROOM_ID)

    with pytest.raises(RemoteWriteError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.status_code == 200


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_change_feed_against_live_server():
    async def scenario():
        port = _free_port()
        server = uvicorn.Server(
            uvicorn.Config(app, host="127.0.0.1", port=port, log_level="warning", lifespan="off")
        )
        serving = asyncio.ensure_future(server.serve())
        try:
            for _ in range(500):
                if server.started:
                    break
                await asyncio.sleep(0.01)
            assert server.started

            async with RoomStoreClient(f"http://127.0.0.1:{port}") as rooms:
                room_id = await rooms.create_room("alice")
                feed = rooms.subscribe(room_id)
                pushed = asyncio.ensure_future(feed.__anext__())
                try:
                    # The write is repeated until the feed is registered and echoes it
                    for _ in range(50):
                        await rooms.update_room(room_id, {"player_o_id": "bob", "status": "playing"})
                        done, _ = await asyncio.wait({pushed}, timeout=0.1)
                        if done:
                            break
                    room = await asyncio.wait_for(pushed, timeout=5)
                finally:
                    pushed.cancel()
                    await asyncio.gather(pushed, return_exceptions=True)
                    await feed.aclose()

                with pytest.raises(NetworkError):
                    async for _ in rooms.subscribe("0f8fad5b-0000-0000-0000-000000000000"):
                        pass
            return room_id, room
        finally:
            server.should_exit = True
            await serving

    room_id, room = asyncio.run(scenario())
    assert room.id == room_id
    assert room.status == "playing"
    assert room.player_o_id == "bob"
    assert room.player_x_id == "alice"
