"""Core rules for Infinite Tic-Tac-Toe (three marks per player, oldest vanishes)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

Player = str  # "X" or "O"
Board = List[Optional[Player]]

PLAYERS: Tuple[Player, Player] = ("X", "O")
FIRST_PLAYER: Player = "X"
MAX_MARKS = 3
BOARD_SIZE = 9

WAITING = "waiting"
PLAYING = "playing"

WINNING_LINES: Tuple[Tuple[int, int, int], ...] = (
    (0, 1, 2),
    (3, 4, 5),
    (6, 7, 8),
    (0, 3, 6),
    (1, 4, 7),
    (2, 5, 8),
    (0, 4, 8),
    (2, 4, 6),
)


class IllegalMoveError(ValueError):
    """Raised when a mark cannot be placed on the requested cell."""


def other_player(player: Player) -> Player:
    return "O" if player == "X" else "X"


# ---------- Moves & board ----------


@dataclass(frozen=True)
class Move:
    index: int
    player: Player
    # Strictly increasing per game; decides eviction order and render identity
    order: int

    def to_dict(self) -> Dict[str, object]:
        return {"index": self.index, "player": self.player, "order": self.order}

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "Move":
        return cls(
            index=int(data["index"]), player=str(data["player"]), order=int(data["order"])
        )


def project(moves: Iterable[Move]) -> Board:
    """Lay the move list onto a 9-cell board; later entries win a shared cell."""
    board: Board = [None] * BOARD_SIZE
    for move in moves:
        board[move.index] = move.player
    return board


def find_win_line(board: Sequence[Optional[Player]]) -> Optional[Tuple[int, int, int]]:
    """First completed line on the board, for highlighting."""
    for line in WINNING_LINES:
        a, b, c = line
        if board[a] is not None and board[a] == board[b] == board[c]:
            return line
    return None


def check_winner(board: Sequence[Optional[Player]]) -> Optional[Player]:
    line = find_win_line(board)
    return board[line[0]] if line else None


def marks_of(moves: Iterable[Move], player: Player) -> List[Move]:
    """A player's marks, oldest first."""
    return sorted((m for m in moves if m.player == player), key=lambda m: m.order)


def next_order(moves: Sequence[Move]) -> int:
    return max((m.order for m in moves), default=-1) + 1


def apply_move(
    moves: Sequence[Move], index: int, player: Player
) -> Tuple[List[Move], Optional[int]]:
    """Place ``player`` at ``index``.

    Returns the new move list and the cell of the evicted mark (or None). A
    player holding MAX_MARKS loses their oldest mark before the new one lands.
    The cell must be empty beforehand, including a cell about to be evicted.
    """
    if player not in PLAYERS:
        raise IllegalMoveError(f"Unknown player {player!r}")
    if not 0 <= index < BOARD_SIZE:
        raise IllegalMoveError(f"Cell index {index} is off the board")
    if project(moves)[index] is not None:
        raise IllegalMoveError("Cell already occupied")

    # Numbered against the full list so evicted numbers are never reused
    order = next_order(moves)
    new_moves = list(moves)
    evicted: Optional[int] = None
    own = marks_of(new_moves, player)
    if len(own) >= MAX_MARKS:
        oldest = own[0]
        new_moves.remove(oldest)
        evicted = oldest.index

    new_moves.append(Move(index=index, player=player, order=order))
    return new_moves, evicted


def fading_index(
    moves: Sequence[Move], current_player: Player, winner: Optional[Player]
) -> Optional[int]:
    """Cell of the mark that vanishes on the current player's next move."""
    if winner:
        return None
    own = marks_of(moves, current_player)
    if len(own) >= MAX_MARKS:
        return own[0].index
    return None


# ---------- Room ----------


@dataclass(frozen=True)
class MoveOutcome:
    moves: List[Move]
    current_player: Player
    winner: Optional[Player]
    evicted: Optional[int] = None

    def fields(self) -> Dict[str, object]:
        """Record fields to write for this outcome."""
        return {
            "moves": [m.to_dict() for m in self.moves],
            "current_player": self.current_player,
            "winner": self.winner,
        }


@dataclass
class Room:
    id: str
    player_x_id: str
    moves: List[Move] = field(default_factory=list)
    current_player: Player = FIRST_PLAYER
    winner: Optional[Player] = None
    player_o_id: Optional[str] = None
    status: str = WAITING
    version: int = 0

    # ---- derived state ----

    def board(self) -> Board:
        return project(self.moves)

    def win_line(self) -> Optional[Tuple[int, int, int]]:
        return find_win_line(self.board()) if self.winner else None

    def fading_index(self) -> Optional[int]:
        return fading_index(self.moves, self.current_player, self.winner)

    def last_order(self) -> int:
        return next_order(self.moves) - 1

    def role_of(self, player_id: str) -> Optional[Player]:
        """Symbol owned by ``player_id``; None means spectator."""
        if self.player_x_id == player_id:
            return "X"
        if self.player_o_id is not None and self.player_o_id == player_id:
            return "O"
        return None

    def is_turn_of(self, player_id: str) -> bool:
        role = self.role_of(player_id)
        return (
            self.status == PLAYING
            and role is not None
            and role == self.current_player
            and not self.winner
        )

    # ---- transitions ----

    def play(self, index: int, player: Player) -> MoveOutcome:
        """Outcome of ``player`` marking ``index``; the room itself is untouched."""
        if self.winner:
            raise IllegalMoveError("Game already finished")
        moves, evicted = apply_move(self.moves, index, player)
        winner = check_winner(project(moves))
        # The turn freezes on a win until the room is reset
        current = self.current_player if winner else other_player(player)
        return MoveOutcome(moves=moves, current_player=current, winner=winner, evicted=evicted)

    def with_fields(self, fields: Dict[str, object]) -> "Room":
        """Copy of the room with record-shaped ``fields`` overwritten."""
        record = self.to_record()
        record.update(fields)
        return Room.from_record(record)

    # ---- wire format ----

    def to_record(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "moves": [m.to_dict() for m in self.moves],
            "current_player": self.current_player,
            "winner": self.winner,
            "player_x_id": self.player_x_id,
            "player_o_id": self.player_o_id,
            "status": self.status,
            "version": self.version,
        }

    @classmethod
    def from_record(cls, record: Dict[str, object]) -> "Room":
        moves = [
            m if isinstance(m, Move) else Move.from_dict(m)
            for m in (record.get("moves") or [])
        ]
        return cls(
            id=str(record["id"]),
            player_x_id=str(record["player_x_id"]),
            moves=moves,
            current_player=str(record.get("current_player") or FIRST_PLAYER),
            winner=record.get("winner"),
            player_o_id=record.get("player_o_id"),
            status=str(record.get("status") or WAITING),
            version=int(record.get("version") or 0),
        )


def reset_fields() -> Dict[str, object]:
    return {
        "moves": [],
        "current_player": FIRST_PLAYER,
        "winner": None,
        "status": PLAYING,
    }
