import asyncio
import logging
import uuid
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from ..errors import IdentityAlreadyBound, RoomNotFound
from ..models import RoomPhase, RoomSummary
from .game_state import Room

log = logging.getLogger(__name__)

CLOSE_NORMAL = 1000


def is_open(websocket: WebSocket) -> bool:
    return (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    )


class RoomManager:
    """Binds identities to rooms and fans messages out to their connections."""

    def __init__(self, max_occupants: int = 1):
        self.max_occupants = max_occupants
        self.rooms: dict[str, Room] = {}
        self.identity_to_room: dict[str, str] = {}
        self._close_tasks: dict[str, asyncio.Task] = {}

    @property
    def online_count(self) -> int:
        return len(self.identity_to_room)

    def get(self, room_id: str) -> Room | None:
        return self.rooms.get(room_id)

    def require(self, room_id: str) -> Room:
        room = self.rooms.get(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        return room

    def room_of(self, identity: str) -> Room | None:
        room_id = self.identity_to_room.get(identity)
        return self.rooms.get(room_id) if room_id is not None else None

    def identity_for(self, websocket: WebSocket) -> tuple[str, Room] | None:
        for room in self.rooms.values():
            for address, conn in room.connections.items():
                if conn is websocket:
                    return address, room
        return None

    def create_room(self, owner: str, websocket: WebSocket | None = None) -> str:
        bound = self.identity_to_room.get(owner)
        if bound is not None:
            raise IdentityAlreadyBound(owner, bound)

        room_id = str(uuid.uuid4())
        room = Room(room_id, max_occupants=self.max_occupants)
        self.rooms[room_id] = room
        room.bind(owner, websocket)
        self.identity_to_room[owner] = room_id
        return room_id

    def join(self, room_id: str, identity: str, websocket: WebSocket | None) -> Room:
        room = self.require(room_id)
        bound = self.identity_to_room.get(identity)
        if bound is not None and bound != room_id:
            raise IdentityAlreadyBound(identity, bound)

        room.bind(identity, websocket)
        self.identity_to_room[identity] = room_id
        return room

    def unbind_connection(self, websocket: WebSocket) -> str | None:
        """Forget a dropped connection. Identities stay bound once a game is running."""
        found = self.identity_for(websocket)
        if found is None:
            return None
        identity, room = found
        room.unbind_connection(websocket)
        if room.phase.rank < RoomPhase.PLAYING.rank:
            room.remove(identity)
            self.identity_to_room.pop(identity, None)
            if not len(room):
                log.info(f"Room {room.room_id} is empty, removing it")
                self.rooms.pop(room.room_id, None)
        return identity

    def available_rooms(self) -> list[RoomSummary]:
        return [
            room.summary()
            for room in self.rooms.values()
            if room.phase in (RoomPhase.WAITING, RoomPhase.READY) and room.host
        ]

    async def send(self, room_id: str, identity: str, message: dict[str, Any]) -> bool:
        room = self.rooms.get(room_id)
        websocket = room.connection_of(identity) if room else None
        if websocket is None or not is_open(websocket):
            return False
        try:
            await websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError) as e:
            log.debug(f"Skipping closed connection for {identity}: {e}")
            return False
        return True

    async def broadcast_to_room(self, room_id: str, message: dict[str, Any]) -> int:
        room = self.rooms.get(room_id)
        if not room:
            log.debug(f"Broadcast to missing room {room_id} dropped")
            return 0

        delivered = 0
        for identity in room.occupants:
            if await self.send(room_id, identity, message):
                delivered += 1
        return delivered

    async def close(self, room_id: str) -> None:
        room = self.rooms.pop(room_id, None)
        if room is None:
            return

        room.advance(RoomPhase.CLOSED)
        for identity, websocket in room.connections.items():
            if is_open(websocket):
                try:
                    await websocket.close(code=CLOSE_NORMAL, reason="Room closed")
                except RuntimeError as e:
                    log.debug(f"Connection for {identity} already closed: {e}")
        for identity in room.occupants:
            if self.identity_to_room.get(identity) == room_id:
                del self.identity_to_room[identity]
        log.info(f"Room {room_id} closed")

    def schedule_close(self, room_id: str, delay: float) -> asyncio.Task:
        existing = self._close_tasks.get(room_id)
        if existing is not None and not existing.done():
            return existing

        async def close_later() -> None:
            try:
                await asyncio.sleep(delay)
                await self.close(room_id)
            finally:
                self._close_tasks.pop(room_id, None)

        task = asyncio.create_task(close_later())
        self._close_tasks[room_id] = task
        return task

    async def shutdown(self) -> None:
        tasks = list(self._close_tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
