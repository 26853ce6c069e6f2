"""Terminal client: renders the room and forwards typed commands to a session."""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from typing import Callable, List, Optional, TextIO

from .client import RoomStoreClient, parse_room_ref
from .errors import InfiniteXOError, RoomFullError
from .game import WAITING, Room
from .session import GameSession
from .sync import SyncEvent

logger = logging.getLogger(__name__)

HELP = "Cells are numbered 1-9 left to right, top to bottom. r = play again, q = quit."

EVENT_LINES = {
    SyncEvent.MARK_PLACED: "* mark placed",
    SyncEvent.MARK_EVICTED: "* oldest mark vanished",
    SyncEvent.WIN: "*** {winner} wins! ***",
    SyncEvent.PLAYER_JOINED: "* opponent joined",
    SyncEvent.GAME_RESET: "* board cleared",
}


def render_board(room: Room) -> str:
    """Board as text; the mark about to vanish is lower-case, a winning line bracketed."""

    board = room.board()
    fading = room.fading_index()
    line = room.win_line() or ()
    cells: List[str] = []
    for index, mark in enumerate(board):
        if mark is None:
            text = str(index + 1)
        elif index == fading:
            text = mark.lower()
        else:
            text = mark
        cells.append(f"[{text}]" if index in line else f" {text} ")
    rows = ["|".join(cells[i : i + 3]) for i in range(0, 9, 3)]
    return "\n---+---+---\n".join(rows)


def status_line(session: GameSession) -> str:
    room = session.room
    if room is None:
        return session.error or "Loading..."
    role = session.my_role
    if room.status == WAITING:
        return "Waiting for an opponent..."
    if room.winner:
        if role is None:
            return f"{room.winner} wins!"
        return "You win!" if room.winner == role else f"{room.winner} wins! You lose."
    whose = "your turn" if session.is_my_turn else "opponent's turn"
    return f"{room.current_player} {whose}"


def render(session: GameSession) -> str:
    room = session.room
    if room is None:
        return status_line(session)
    role = session.my_role
    header = f"You are {role}" if role else "Spectating"
    parts = [header]
    if room.status != WAITING:
        parts.append(render_board(room))
    parts.append(status_line(session))
    return "\n".join(parts)


class LineReader:
    """Feed lines from ``stream`` into the event loop from a daemon thread.

    A blocked read never holds up interpreter shutdown, so Ctrl-C exits at once.
    """

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self.stream = stream if stream is not None else sys.stdin
        self._lines: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._lines = asyncio.Queue()
        threading.Thread(target=self._run, name="stdin-reader", daemon=True).start()

    def _run(self) -> None:
        for line in iter(self.stream.readline, ""):
            if not self._push(line.rstrip("\r\n")):
                return
        self._push(None)

    def _push(self, line: Optional[str]) -> bool:
        try:
            self._loop.call_soon_threadsafe(self._lines.put_nowait, line)
        except RuntimeError:
            # loop already closed
            return False
        return True

    async def read_line(self, prompt: str = "") -> str:
        """Next line without its newline; EOFError once the stream is exhausted."""
        if self._lines is None:
            self.start()
        if prompt and self.stream.isatty():
            sys.stdout.write(prompt)
            sys.stdout.flush()
        line = await self._lines.get()
        if line is None:
            self._lines.put_nowait(None)
            raise EOFError
        return line


async def handle_command(session: GameSession, command: str, out: Callable[[str], None]) -> bool:
    """Run one typed command; False means the user asked to quit."""

    command = command.strip().lower()
    if command in ("q", "quit", "exit"):
        return False
    if command in ("r", "reset"):
        await session.reset()
    elif command in ("h", "help", "?"):
        out(HELP)
    elif command.isdigit() and 1 <= int(command) <= 9:
        if not await session.move(int(command) - 1):
            out("Not a playable cell right now.")
    elif command:
        out(f"Unknown command {command!r}. {HELP}")
    return True


async def play(
    client: RoomStoreClient,
    player_id: str,
    room_ref: Optional[str] = None,
    poll_interval: float = 1.5,
    out: Callable[[str], None] = print,
    stdin: Optional[TextIO] = None,
) -> int:
    """Create or open a room and play it from the terminal until the user quits."""

    if room_ref:
        room_id = parse_room_ref(room_ref)
    else:
        try:
            room_id = await client.create_room(player_id)
        except InfiniteXOError as exc:
            out(f"Failed to create game: {exc}")
            return 1
        out(f"Share this link with a friend to start playing:\n  {client.room_link(room_id)}")

    def on_event(event: SyncEvent, room: Room) -> None:
        out(EVENT_LINES[event].format(winner=room.winner))

    session = GameSession(
        client,
        room_id,
        player_id,
        on_event=on_event,
        on_notice=lambda message: out(f"! {message}"),
        on_change=lambda room: out(render(session)),
        poll_interval=poll_interval,
    )
    room = await session.open()
    if room is None:
        out(session.error or "Room not found")
        return 1
    logger.info("Playing room %s as %s", room_id, session.my_role or "spectator")
    reader = LineReader(stdin)
    try:
        try:
            await session.auto_join()
        except RoomFullError:
            out("Room is full, watching as a spectator.")
        out(render(session))
        out(HELP)
        while True:
            try:
                command = await reader.read_line("> ")
            except EOFError:
                break
            if not await handle_command(session, command, out):
                break
    finally:
        await session.close()
    return 0
