from .engine import GameEngine, GridEngine, GridState, MoveResult, TerminalResult
from .game_loop import GameLoop, state_payload
from .game_state import Room
from .room_manager import RoomManager

__all__ = [
    "GameEngine",
    "GridEngine",
    "GridState",
    "MoveResult",
    "TerminalResult",
    "GameLoop",
    "state_payload",
    "Room",
    "RoomManager",
]
