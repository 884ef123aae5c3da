from enum import Enum

from pydantic import BaseModel


class RoomPhase(str, Enum):
    WAITING = "waiting"
    READY = "ready"
    PLAYING = "playing"
    CLOSING = "closing"
    CLOSED = "closed"

    @property
    def rank(self) -> int:
        return list(RoomPhase).index(self)


class RoomSummary(BaseModel):
    room_id: str
    host_address: str | None
    phase: RoomPhase
    occupants: list[str]
    created_at: int


class OccupantInfo(BaseModel):
    address: str
    connected_at: float
    moves_submitted: int = 0
