import logging
import time
from typing import Any

from fastapi import WebSocket

from ..errors import JoinFailed
from ..models import OccupantInfo, RoomPhase, RoomSummary
from ..models.rpc import now_ms

log = logging.getLogger(__name__)


class Room:

    def __init__(self, room_id: str, max_occupants: int = 1):
        log.info(f"Creating new room {room_id}")
        self.room_id = room_id
        self.max_occupants = max_occupants
        self.phase = RoomPhase.WAITING
        self.created_at = now_ms()

        self._connections: dict[str, WebSocket] = {}
        self._occupant_info: dict[str, OccupantInfo] = {}

        self.game_state: Any = None
        self.host: str | None = None

    def __len__(self) -> int:
        return len(self._occupant_info)

    @property
    def is_full(self) -> bool:
        return len(self._occupant_info) >= self.max_occupants

    @property
    def occupants(self) -> list[str]:
        return list(self._occupant_info)

    @property
    def connections(self) -> dict[str, WebSocket]:
        return dict(self._connections)

    def has_occupant(self, address: str) -> bool:
        return address in self._occupant_info

    def connection_of(self, address: str) -> WebSocket | None:
        return self._connections.get(address)

    def occupant_info(self, address: str) -> OccupantInfo | None:
        return self._occupant_info.get(address)

    def bind(self, address: str, websocket: WebSocket | None) -> None:
        if address in self._occupant_info:
            log.info(f"Rebinding connection for {address} in room {self.room_id}")
        else:
            if self.is_full:
                raise JoinFailed(f"Room {self.room_id} is full")
            if self.phase.rank >= RoomPhase.PLAYING.rank:
                raise JoinFailed(f"Room {self.room_id} is no longer accepting players")
            log.info(f"Adding {address} to room {self.room_id}")
            self._occupant_info[address] = OccupantInfo(address=address, connected_at=time.time())
            if self.host is None:
                self.host = address

        if websocket is not None:
            self._connections[address] = websocket
        if self.is_full:
            self.advance(RoomPhase.READY)

    def unbind_connection(self, websocket: WebSocket) -> str | None:
        for address, conn in list(self._connections.items()):
            if conn is websocket:
                del self._connections[address]
                return address
        return None

    def remove(self, address: str) -> None:
        log.info(f"Removing {address} from room {self.room_id}")
        self._connections.pop(address, None)
        self._occupant_info.pop(address, None)
        if self.host == address:
            self.host = next(iter(self._occupant_info), None)

    def advance(self, target: RoomPhase) -> bool:
        """Move the lifecycle forward. Backward or repeated transitions are no-ops."""
        if target.rank <= self.phase.rank:
            if target != self.phase:
                log.debug(f"Room {self.room_id} ignoring {self.phase.value} -> {target.value}")
            return False
        log.info(f"Room {self.room_id}: {self.phase.value} -> {target.value}")
        self.phase = target
        return True

    def record_move(self, address: str) -> None:
        info = self._occupant_info.get(address)
        if info is not None:
            info.moves_submitted += 1

    def summary(self) -> RoomSummary:
        return RoomSummary(
            room_id=self.room_id,
            host_address=self.host,
            phase=self.phase,
            occupants=self.occupants,
            created_at=self.created_at,
        )
