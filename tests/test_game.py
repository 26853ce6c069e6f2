"""Unit tests for the infinite tic-tac-toe rules."""

import pytest

from infinitexo.game import (
    IllegalMoveError,
    Move,
    Room,
    apply_move,
    check_winner,
    fading_index,
    find_win_line,
    marks_of,
    project,
)


def _moves(*cells):
    """Alternating X/O moves on ``cells`` in play order."""
    moves = []
    for i, cell in enumerate(cells):
        moves, _ = apply_move(moves, cell, "X" if i % 2 == 0 else "O")
    return moves


def test_first_move_in_the_centre():
    room = Room(id="r1", player_x_id="alice", player_o_id="bob", status="playing")
    outcome = room.play(4, "X")
    board = project(outcome.moves)
    assert board[4] == "X"
    assert board.count(None) == 8
    assert outcome.current_player == "O"
    assert outcome.winner is None
    assert outcome.evicted is None


def test_fourth_mark_evicts_oldest():
    moves = [
        Move(index=0, player="X", order=0),
        Move(index=6, player="O", order=1),
        Move(index=1, player="X", order=2),
        Move(index=7, player="O", order=3),
        Move(index=2, player="X", order=4),
        Move(index=5, player="O", order=5),
    ]
    new_moves, evicted = apply_move(moves, 3, "X")
    assert evicted == 0
    own = marks_of(new_moves, "X")
    assert len(own) == 3
    assert sorted(m.index for m in own) == [1, 2, 3]
    assert [i for i, c in enumerate(project(new_moves)) if c == "X"] == [1, 2, 3]


def test_eviction_keeps_three_marks_and_drops_lowest_order():
    moves = _moves(0, 8, 1, 7, 5, 6)
    for cell in (3, 4):
        player = "X"
        before = marks_of(moves, player)
        moves, evicted = apply_move(moves, cell, player)
        after = marks_of(moves, player)
        assert len(after) == 3
        assert evicted == before[0].index
        assert before[0] not in moves
        moves, _ = apply_move(moves, [c for c in range(9) if project(moves)[c] is None][0], "O")
    assert len(moves) == 6


def test_orders_strictly_increase_and_are_never_reused():
    moves = []
    seen = []
    free_cells = [0, 8, 1, 7, 5, 3, 2, 6, 4]
    for turn in range(12):
        player = "X" if turn % 2 == 0 else "O"
        cell = next(c for c in free_cells if project(moves)[c] is None)
        moves, _ = apply_move(moves, cell, player)
        seen.append(moves[-1].order)
    assert seen == sorted(set(seen))
    assert seen == list(range(12))


def test_occupied_cell_is_rejected():
    moves = _moves(4)
    with pytest.raises(IllegalMoveError):
        apply_move(moves, 4, "O")


def test_own_fading_cell_is_not_playable():
    moves = _moves(0, 8, 1, 7, 5, 6)
    assert fading_index(moves, "X", None) == 0
    with pytest.raises(IllegalMoveError):
        apply_move(moves, 0, "X")


def test_off_board_index_is_rejected():
    with pytest.raises(IllegalMoveError):
        apply_move([], 9, "X")


def test_winner_requires_full_line_of_one_symbol():
    board = ["X", "X", "X", None, "O", None, "O", None, None]
    assert check_winner(board) == "X"
    assert find_win_line(board) == (0, 1, 2)

    mixed = ["X", "O", "X", "O", "X", "O", "O", "X", "O"]
    assert check_winner(mixed) is None
    assert check_winner([None] * 9) is None


def test_every_line_is_detected():
    for line in [(0, 1, 2), (3, 4, 5), (6, 7, 8), (0, 3, 6), (1, 4, 7), (2, 5, 8), (0, 4, 8), (2, 4, 6)]:
        board = [None] * 9
        for cell in line:
            board[cell] = "O"
        assert check_winner(board) == "O"
        assert find_win_line(board) == line


def test_win_freezes_turn_and_blocks_further_moves():
    room = Room(
        id="r1",
        player_x_id="alice",
        player_o_id="bob",
        status="playing",
        moves=_moves(0, 3, 1, 4),
    )
    outcome = room.play(2, "X")
    assert outcome.winner == "X"
    assert outcome.current_player == "X"

    finished = room.with_fields(outcome.fields())
    assert finished.win_line() == (0, 1, 2)
    assert not finished.is_turn_of("alice")
    assert not finished.is_turn_of("bob")
    with pytest.raises(IllegalMoveError):
        finished.play(8, "O")


def test_roles_and_turns():
    room = Room(id="r1", player_x_id="alice")
    assert room.role_of("alice") == "X"
    assert room.role_of("bob") is None
    assert not room.is_turn_of("alice")  # still waiting

    room = room.with_fields({"player_o_id": "bob", "status": "playing"})
    assert room.role_of("bob") == "O"
    assert room.is_turn_of("alice")
    assert not room.is_turn_of("bob")
    assert not room.is_turn_of("carol")


def test_record_round_trip_keeps_moves():
    room = Room(id="r1", player_x_id="alice", moves=_moves(4, 0), current_player="X", version=3)
    again = Room.from_record(room.to_record())
    assert again == room
