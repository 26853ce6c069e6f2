"""Infinite Tic-Tac-Toe package exposing game rules, the room client, and the web application."""

from .client import RoomStoreClient
from .game import Room, apply_move, check_winner
from .session import GameSession
from .ui import app

__all__ = ["GameSession", "Room", "RoomStoreClient", "app", "apply_move", "check_winner"]
