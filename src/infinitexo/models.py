"""Pydantic models for the room record as it travels over HTTP and WebSocket."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .game import FIRST_PLAYER, WAITING

Symbol = Literal["X", "O"]
Status = Literal["waiting", "playing"]


class MoveModel(BaseModel):
    index: int = Field(ge=0, le=8)
    player: Symbol
    order: int = Field(ge=0)


class RoomRecord(BaseModel):
    """Stored room row. The store never checks game rules."""

    id: str
    moves: List[MoveModel] = Field(default_factory=list)
    current_player: Symbol = FIRST_PLAYER
    winner: Optional[Symbol] = None
    player_x_id: str
    player_o_id: Optional[str] = None
    status: Status = WAITING
    version: int = 1


class CreateRoomRequest(BaseModel):
    """Request payload for opening a new room."""

    model_config = ConfigDict(populate_by_name=True)

    player_id: str = Field(alias="playerId", min_length=1, max_length=128)


class RoomUpdate(BaseModel):
    """Partial overwrite of a room; unset fields are left alone."""

    model_config = ConfigDict(extra="forbid")

    moves: Optional[List[MoveModel]] = None
    current_player: Optional[Symbol] = None
    winner: Optional[Symbol] = None
    status: Optional[Status] = None
    player_o_id: Optional[str] = None
    expected_version: Optional[int] = Field(
        default=None,
        description="Reject the write unless the stored version still matches",
    )

    def fields(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_unset=True, exclude={"expected_version"})
        # current_player and status are never nullable on the record
        for key in ("current_player", "status", "moves"):
            if key in data and data[key] is None:
                del data[key]
        return data
