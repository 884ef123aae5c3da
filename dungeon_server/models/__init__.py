from .messages import (
    AppSessionSignature,
    ClientMessage,
    GetAvailableRooms,
    JoinRoom,
    Move as MoveMessage,
    StartGame,
    parse_client_message,
    server_message,
)
from .room import OccupantInfo, RoomPhase, RoomSummary
from .session import (
    AllocationEntry,
    ChannelDefinition,
    LedgerEvent,
    LedgerEventName,
    Move,
    Outcome,
)

__all__ = [
    "AppSessionSignature",
    "ClientMessage",
    "GetAvailableRooms",
    "JoinRoom",
    "MoveMessage",
    "StartGame",
    "parse_client_message",
    "server_message",
    "OccupantInfo",
    "RoomPhase",
    "RoomSummary",
    "AllocationEntry",
    "ChannelDefinition",
    "LedgerEvent",
    "LedgerEventName",
    "Move",
    "Outcome",
]
