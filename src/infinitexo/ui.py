"""FastAPI app hosting the shared room store and the browser client."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse

from .config import load_settings
from .errors import RoomNotFoundError, StaleWriteError
from .models import CreateRoomRequest, RoomRecord, RoomUpdate
from .store import RoomStore

logger = logging.getLogger(__name__)

SETTINGS = load_settings()
STORE = RoomStore(ttl=SETTINGS.room_ttl)
ROOM_PATH = "/game/"

app = FastAPI(
    title="Infinite Tic-Tac-Toe",
    description="Tic-tac-toe where each player keeps only their three newest marks",
)


def _resolve_join_base_url(request: Request) -> str:
    """Determine the best base URL for shareable room links."""

    if SETTINGS.public_url:
        return SETTINGS.public_url

    origin = request.headers.get("origin")
    if origin:
        return origin.rstrip("/")

    forwarded_host = request.headers.get("x-forwarded-host")
    if forwarded_host:
        scheme = request.headers.get("x-forwarded-proto") or request.url.scheme
        return f"{scheme}://{forwarded_host}".rstrip("/")

    host = request.headers.get("host")
    if host:
        return f"{request.url.scheme}://{host}".rstrip("/")

    return str(request.base_url).rstrip("/")


def join_url(base_url: str, room_id: str) -> str:
    return f"{base_url.rstrip('/')}{ROOM_PATH}{room_id}"


async def _get_record(room_id: str) -> RoomRecord:
    try:
        return await STORE.get(room_id)
    except RoomNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Room not found") from exc


@app.post("/api/rooms")
async def create_room(payload: CreateRoomRequest, request: Request) -> Dict[str, object]:
    record = await STORE.insert(payload.player_id)
    base_url = _resolve_join_base_url(request)
    return {
        "room": record.model_dump(mode="json"),
        "joinUrl": join_url(base_url, record.id),
    }


@app.get("/api/rooms/{room_id}")
async def get_room(room_id: str) -> Dict[str, object]:
    record = await _get_record(room_id)
    return record.model_dump(mode="json")


@app.patch("/api/rooms/{room_id}")
async def update_room(room_id: str, payload: RoomUpdate) -> Dict[str, object]:
    fields = payload.fields()
    try:
        record = await STORE.update(room_id, fields, payload.expected_version)
    except RoomNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Room not found") from exc
    except StaleWriteError as exc:
        raise HTTPException(
            status_code=409, detail="Room was modified concurrently"
        ) from exc
    return record.model_dump(mode="json")


@app.websocket("/ws/rooms/{room_id}")
async def room_changes(websocket: WebSocket, room_id: str) -> None:
    """Push the full room record to the socket after every write."""

    try:
        subscription = await STORE.subscribe(room_id)
    except RoomNotFoundError:
        # Rejecting before accept refuses the handshake
        await websocket.close(code=4404)
        return
    await websocket.accept()

    async def forward() -> None:
        while True:
            payload = await subscription.get()
            await websocket.send_json(payload)

    async def wait_for_disconnect() -> None:
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass

    logger.debug("Subscriber attached to room %s", room_id)
    tasks = [
        asyncio.ensure_future(forward()),
        asyncio.ensure_future(wait_for_disconnect()),
    ]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, (WebSocketDisconnect, RuntimeError)):
                raise exc
    finally:
        for task in tasks:
            task.cancel()
        await STORE.unsubscribe(subscription)
        logger.debug("Subscriber left room %s", room_id)


@app.get("/", response_class=HTMLResponse)
def index() -> str:
    return HTML_PAGE


@app.get(ROOM_PATH + "{room_id}", response_class=HTMLResponse)
def room_page(room_id: str) -> str:
    # Unknown ids are reported by the page itself after its first fetch
    return HTML_PAGE


HTML_PAGE = """<!DOCTYPE html>
<html lang=\"en\">
  <head>
    <meta charset=\"utf-8\" />
    <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\" />
    <title>Infinite Tic-Tac-Toe</title>
    <style>
      :root {
        color-scheme: dark;
        font-family: system-ui, -apple-system, BlinkMacSystemFont, \"Segoe UI\", sans-serif;
        --x-color: #e8913a;
        --o-color: #3b9fd8;
      }
      * {
        box-sizing: border-box;
      }
      body {
        margin: 0;
        min-height: 100vh;
        display: flex;
        justify-content: center;
        align-items: center;
        background: #14161c;
        color: #e6e8ee;
      }
      main {
        display: flex;
        flex-direction: column;
        align-items: center;
        gap: 1.25rem;
        padding: 2rem 1rem;
      }
      h1 {
        margin: 0;
        font-size: 1.6rem;
        letter-spacing: 0.04em;
      }
      .hidden {
        display: none !important;
      }
      .muted {
        color: #8b90a0;
        font-size: 0.85rem;
      }
      button,
      input {
        font: inherit;
        border-radius: 8px;
        border: 1px solid #2b2f3a;
        padding: 0.55rem 1rem;
        background: #20242e;
        color: inherit;
      }
      button {
        cursor: pointer;
      }
      button.primary {
        background: var(--x-color);
        border-color: var(--x-color);
        color: #14161c;
        font-weight: 600;
      }
      .row {
        display: flex;
        gap: 0.5rem;
      }
      .grid {
        display: grid;
        grid-template-columns: repeat(3, 6rem);
        gap: 6px;
        padding: 6px;
        border-radius: 12px;
        background: #2b2f3a;
      }
      .grid.waiting {
        opacity: 0.75;
      }
      .cell {
        height: 6rem;
        font-size: 3rem;
        font-family: ui-monospace, monospace;
        font-weight: 700;
        background: #1b1e26;
        border: none;
      }
      .cell:disabled {
        cursor: default;
      }
      .cell.x {
        color: var(--x-color);
      }
      .cell.o {
        color: var(--o-color);
      }
      .cell.fading {
        opacity: 0.25;
      }
      .cell.win {
        text-shadow: 0 0 12px currentColor;
      }
      .link {
        font-family: ui-monospace, monospace;
        font-size: 0.8rem;
        padding: 0.5rem 0.75rem;
        border-radius: 8px;
        background: #20242e;
        word-break: break-all;
      }
      #toast {
        position: fixed;
        bottom: 1rem;
        left: 50%;
        transform: translateX(-50%);
        background: #b3261e;
        color: white;
        padding: 0.6rem 1rem;
        border-radius: 8px;
      }
    </style>
  </head>
  <body>
    <main>
      <h1>Infinite Tic-Tac-Toe</h1>
      <section id=\"home\" class=\"hidden\">
        <p class=\"muted\">Each player keeps only their three newest marks.</p>
        <div class=\"row\">
          <button id=\"create\" class=\"primary\">New game</button>
        </div>
        <div class=\"row\">
          <input id=\"joinInput\" placeholder=\"Paste game link or ID\" />
          <button id=\"join\">Join</button>
        </div>
      </section>
      <section id=\"room\" class=\"hidden\">
        <p id=\"role\" class=\"muted\"></p>
        <div id=\"lobby\" class=\"hidden\">
          <p class=\"muted\">Share this link with a friend to start playing:</p>
          <div class=\"row\">
            <span id=\"link\" class=\"link\"></span>
            <button id=\"copy\">Copy</button>
          </div>
        </div>
        <p id=\"status\"></p>
        <div id=\"board\" class=\"grid hidden\"></div>
        <button id=\"again\" class=\"primary hidden\">Play again in same room</button>
        <p><a href=\"/\" class=\"muted\">Back to home</a></p>
      </section>
      <p id=\"error\" class=\"hidden\"></p>
    </main>
    <div id=\"toast\" class=\"hidden\"></div>
    <script>
      const LINES = [
        [0, 1, 2], [3, 4, 5], [6, 7, 8],
        [0, 3, 6], [1, 4, 7], [2, 5, 8],
        [0, 4, 8], [2, 4, 6],
      ];
      const MAX_MARKS = 3;
      const POLL_MS = 1500;
      const $ = (id) => document.getElementById(id);

      function playerId() {
        let id = localStorage.getItem('ttt-player-id');
        if (!id) {
          id = crypto.randomUUID ? crypto.randomUUID() : String(Date.now()) + Math.random();
          localStorage.setItem('ttt-player-id', id);
        }
        return id;
      }

      function toast(message) {
        const el = $('toast');
        el.textContent = message;
        el.classList.remove('hidden');
        setTimeout(() => el.classList.add('hidden'), 3000);
      }

      function project(moves) {
        const board = Array(9).fill(null);
        moves.forEach((m) => (board[m.index] = m.player));
        return board;
      }

      function winLine(board) {
        return LINES.find(([a, b, c]) => board[a] && board[a] === board[b] && board[a] === board[c]) || null;
      }

      function ownMarks(moves, player) {
        return moves.filter((m) => m.player === player).sort((a, b) => a.order - b.order);
      }

      // ---------- home ----------

      async function createRoom() {
        $('create').disabled = true;
        for (let attempt = 0; attempt <= 1; attempt++) {
          try {
            const response = await fetch('/api/rooms', {
              method: 'POST',
              headers: { 'Content-Type': 'application/json' },
              body: JSON.stringify({ playerId: playerId() }),
            });
            if (!response.ok) throw new Error('Failed to create game.');
            const data = await response.json();
            window.location.assign(`/game/${data.room.id}`);
            return;
          } catch (error) {
            if (attempt === 1) toast('Failed to create game. Please try again.');
            else await new Promise((res) => setTimeout(res, 500));
          }
        }
        $('create').disabled = false;
      }

      function joinRoom() {
        const value = $('joinInput').value.trim();
        if (!value) return;
        const match = value.match(/\\/game\\/([a-f0-9-]+)/i);
        window.location.assign(`/game/${match ? match[1] : value}`);
      }

      // ---------- room ----------

      const me = playerId();
      let room = null;
      let active = true;
      let prev = { count: 0, order: -1, winner: null, status: null };

      const myRole = () => (!room ? null : room.player_x_id === me ? 'X' : room.player_o_id === me ? 'O' : null);
      const isMyTurn = () => room && room.status === 'playing' && myRole() === room.current_player && !room.winner;

      function fingerprint(r) {
        const last = r.moves.reduce((max, m) => Math.max(max, m.order), -1);
        return [r.moves.length, last, r.status, r.current_player, r.winner, r.player_o_id, r.version].join('|');
      }

      function apply(next) {
        if (!active) return;
        if (room && next.version < room.version) return;
        const last = next.moves.reduce((max, m) => Math.max(max, m.order), -1);
        if (next.winner && !prev.winner) toast(`${next.winner} wins!`);
        prev = { count: next.moves.length, order: last, winner: next.winner, status: next.status };
        room = next;
        render();
      }

      function render() {
        $('room').classList.remove('hidden');
        const role = myRole();
        $('role').textContent = role ? `You are ${role}` : room.status === 'playing' ? 'Spectating' : '';
        const waiting = room.status === 'waiting';
        $('lobby').classList.toggle('hidden', !waiting);
        $('link').textContent = `${window.location.origin}/game/${room.id}`;
        $('board').classList.toggle('hidden', waiting);
        $('again').classList.toggle('hidden', !room.winner);
        if (waiting) {
          $('status').textContent = 'Waiting for an opponent…';
          return;
        }
        if (room.winner) {
          $('status').textContent = role === null ? `${room.winner} wins!` : room.winner === role ? 'You win!' : `${room.winner} wins! You lose.`;
        } else {
          $('status').textContent = `${room.current_player} ${isMyTurn() ? 'your turn' : "opponent's turn"}`;
        }
        const board = project(room.moves);
        const line = room.winner ? winLine(board) : null;
        const own = ownMarks(room.moves, room.current_player);
        const fading = !room.winner && own.length >= MAX_MARKS ? own[0].index : -1;
        const grid = $('board');
        grid.classList.toggle('waiting', !isMyTurn() && !room.winner);
        grid.innerHTML = '';
        board.forEach((cell, i) => {
          const button = document.createElement('button');
          button.className = 'cell';
          if (cell) button.classList.add(cell.toLowerCase());
          if (i === fading) button.classList.add('fading');
          if (line && line.includes(i)) button.classList.add('win');
          button.textContent = cell || '';
          button.disabled = Boolean(room.winner) || cell !== null || !isMyTurn();
          button.addEventListener('click', () => move(i));
          grid.appendChild(button);
        });
      }

      async function write(fields, failure) {
        try {
          const response = await fetch(`/api/rooms/${room.id}`, {
            method: 'PATCH',
            headers: { 'Content-Type': 'application/json' },
            body: JSON.stringify({ ...fields, expected_version: room.version }),
          });
          if (response.status === 409) {
            await refresh();
            toast('The board changed, try again.');
            return false;
          }
          if (!response.ok) throw new Error(failure);
          apply(await response.json());
          return true;
        } catch (error) {
          toast(error.message || failure);
          return false;
        }
      }

      async function move(index) {
        const role = myRole();
        if (!isMyTurn() || project(room.moves)[index] !== null) return;
        let moves = [...room.moves];
        const own = ownMarks(moves, role);
        const order = moves.reduce((max, m) => Math.max(max, m.order), -1) + 1;
        if (own.length >= MAX_MARKS) moves = moves.filter((m) => m !== own[0]);
        moves.push({ index, player: role, order });
        const line = winLine(project(moves));
        const winner = line ? project(moves)[line[0]] : null;
        await write(
          { moves, winner, current_player: winner ? room.current_player : role === 'X' ? 'O' : 'X' },
          'Failed to record move.'
        );
      }

      async function join() {
        if (myRole() !== null) return;
        if (room.player_o_id && room.player_o_id !== me) {
          showError('Room is full');
          return;
        }
        await write({ player_o_id: me, status: 'playing' }, 'Failed to join game.');
      }

      async function refresh() {
        const response = await fetch(`/api/rooms/${room.id}`);
        if (response.ok) {
          const next = await response.json();
          if (fingerprint(next) !== fingerprint(room)) apply(next);
        }
      }

      function showError(message) {
        active = false;
        $('room').classList.add('hidden');
        $('error').textContent = message;
        $('error').classList.remove('hidden');
      }

      async function openRoom(roomId) {
        const response = await fetch(`/api/rooms/${roomId}`).catch(() => null);
        if (!response) {
          showError('Network error while loading the room');
          return;
        }
        if (!response.ok) {
          showError('Room not found');
          return;
        }
        apply(await response.json());
        if (room.status === 'waiting' && room.player_x_id !== me) await join();
        setInterval(() => refresh().catch(() => {}), POLL_MS);
        const protocol = window.location.protocol === 'https:' ? 'wss' : 'ws';
        const socket = new WebSocket(`${protocol}://${window.location.host}/ws/rooms/${roomId}`);
        socket.addEventListener('message', (event) => apply(JSON.parse(event.data)));
        window.addEventListener('beforeunload', () => {
          active = false;
          socket.close();
        });
      }

      $('create').addEventListener('click', createRoom);
      $('join').addEventListener('click', joinRoom);
      $('copy').addEventListener('click', () => {
        navigator.clipboard.writeText($('link').textContent).then(() => toast('Link copied'));
      });
      $('again').addEventListener('click', () =>
        write({ moves: [], current_player: 'X', winner: null, status: 'playing' }, 'Failed to restart game.')
      );

      const match = window.location.pathname.match(/^\\/game\\/([^/]+)/);
      if (match) {
        openRoom(decodeURIComponent(match[1]));
      } else {
        $('home').classList.remove('hidden');
      }
    </script>
  </body>
</html>
"""
