import json
import logging
from typing import assert_never

from fastapi import WebSocket
from pydantic import ValidationError

from ..dependencies import AppContext
from ..errors import DungeonServerError, InvalidPayload, UnknownMessage
from ..game import Room, state_payload
from ..game.room_manager import is_open
from ..models import (
    AppSessionSignature,
    ClientMessage,
    GetAvailableRooms,
    JoinRoom,
    MoveMessage,
    Outcome,
    RoomPhase,
    StartGame,
    parse_client_message,
    server_message,
)

log = logging.getLogger(__name__)

CHECKPOINT_EVERY_MOVES = 10


class WebSocketHandler:
    """Handles WebSocket message processing and communication"""

    @staticmethod
    async def handle_messages(websocket: WebSocket, context: AppContext) -> None:
        """Main message handling loop for WebSocket connections"""
        context.clients.add(websocket)
        await WebSocketHandler.broadcast_online_users(context)
        try:
            async for message in websocket.iter_text():
                try:
                    msg = parse_client_message(message)
                    await WebSocketHandler._process_message(msg, websocket, context)
                except ValidationError as e:
                    log.warning(f"Invalid message: {e}")
                    await websocket.send_json(WebSocketHandler._rejection(e).to_message())
                except json.JSONDecodeError as e:
                    log.warning(f"Invalid message: {e}")
                    await websocket.send_json(
                        InvalidPayload("Invalid message format").to_message()
                    )
                except DungeonServerError as e:
                    log.info(f"Request rejected with {e.code.value}: {e.message}")
                    await websocket.send_json(e.to_message())
        finally:
            context.clients.discard(websocket)
            found = context.rooms.identity_for(websocket)
            context.rooms.unbind_connection(websocket)
            if found is not None:
                identity, room = found
                log.info(f"{identity} disconnected from room {room.room_id}")
                if context.rooms.get(room.room_id) is None:
                    context.arena.discard_room(room.room_id)
            await WebSocketHandler.broadcast_online_users(context)

    @staticmethod
    def _rejection(error: ValidationError) -> DungeonServerError:
        if any(e["type"] == "union_tag_invalid" for e in error.errors()):
            return UnknownMessage("Unknown message type")
        return InvalidPayload("Invalid message format")

    @staticmethod
    async def _process_message(
            msg: ClientMessage, websocket: WebSocket, context: AppContext
    ) -> None:
        """Dispatch one parsed client message"""
        match msg:
            case JoinRoom():
                await WebSocketHandler._handle_join_room(msg, websocket, context)
            case StartGame():
                await WebSocketHandler._handle_start_game(msg, websocket, context)
            case MoveMessage():
                await WebSocketHandler._handle_move(msg, websocket, context)
            case GetAvailableRooms():
                await WebSocketHandler._handle_get_available_rooms(websocket, context)
            case AppSessionSignature():
                await WebSocketHandler._handle_signature(msg, websocket, context)
            case _:
                assert_never(msg)

    @staticmethod
    def _bound_identity(websocket: WebSocket, context: AppContext) -> tuple[str, Room]:
        found = context.rooms.identity_for(websocket)
        if found is None:
            raise InvalidPayload("Join a room first")
        return found

    @staticmethod
    async def _handle_join_room(msg: JoinRoom, websocket: WebSocket, context: AppContext) -> None:
        """Create a room, or join an existing one"""
        if msg.room_id is None:
            room_id = context.rooms.create_room(msg.eoa, websocket)
            log.info(f"New room {room_id} created for {msg.eoa}")
            await websocket.send_json(server_message("room:created", roomId=room_id, role="host"))
        else:
            room_id = context.rooms.join(msg.room_id, msg.eoa, websocket).room_id
            log.info(f"{msg.eoa} joined room {room_id}")

        await WebSocketHandler.broadcast_online_users(context)

        room = context.rooms.require(room_id)
        if room.game_state is not None:
            await context.rooms.broadcast_to_room(room_id, WebSocketHandler._room_state(room))

        if room.phase == RoomPhase.READY:
            await context.rooms.broadcast_to_room(room_id, server_message("room:ready", roomId=room_id))
            await WebSocketHandler._request_signatures(room_id, context)

    @staticmethod
    async def _request_signatures(room_id: str, context: AppContext) -> None:
        """Send the unsigned proposal to every player for signing"""
        room = context.rooms.require(room_id)
        pending = await context.negotiator.propose(room_id, room.occupants)

        if context.rooms.get(room_id) is None:
            log.info(f"Room {room_id} vanished while proposing, discarding the proposal")
            context.arena.discard_room(room_id)
            return

        for address in pending.players:
            await context.rooms.send(
                room_id,
                address,
                server_message("appSession:signatureRequest", **pending.proposal()),
            )

    @staticmethod
    async def _handle_signature(
            msg: AppSessionSignature, websocket: WebSocket, context: AppContext
    ) -> None:
        """Collect a player's signature and start the session once all are in"""
        identity, room = WebSocketHandler._bound_identity(websocket, context)
        if room.room_id != msg.room_id:
            raise InvalidPayload(f"{identity} is not in room {msg.room_id}")

        if context.negotiator.collect_signature(msg.room_id, identity, msg.signature):
            await WebSocketHandler._start_session(msg.room_id, context)

    @staticmethod
    async def _start_session(room_id: str, context: AppContext) -> None:
        session = await context.negotiator.submit(room_id)

        # the room may have changed or vanished while the submission was in flight
        room = context.rooms.get(room_id)
        if room is None or room.phase.rank > RoomPhase.PLAYING.rank:
            log.warning(f"Room {room_id} is gone, refunding session {session.session_id}")
            context.game_loop.spawn(
                context.negotiator.close(room_id, Outcome(end_condition="abandoned")),
                f"refund-session-{session.session_id}",
            )
            return
        if room.phase != RoomPhase.READY:
            return

        room.game_state = context.engine.create_instance(room.host)
        room.advance(RoomPhase.PLAYING)
        await context.rooms.broadcast_to_room(
            room_id,
            server_message(
                "game:started",
                roomId=room_id,
                sessionId=session.session_id,
                gameState=state_payload(room.game_state),
            ),
        )
        await context.rooms.broadcast_to_room(room_id, WebSocketHandler._room_state(room))
        context.game_loop.start(room_id)

    @staticmethod
    async def _handle_start_game(msg: StartGame, websocket: WebSocket, context: AppContext) -> None:
        """Handle game start requests; retries session creation for a signed proposal"""
        identity, room = WebSocketHandler._bound_identity(websocket, context)
        if msg.room_id is not None and msg.room_id != room.room_id:
            raise InvalidPayload(f"{identity} is not in room {msg.room_id}")

        if room.phase != RoomPhase.READY:
            raise InvalidPayload(f"Room {room.room_id} cannot start while {room.phase.value}")

        if context.arena.get_pending(room.room_id) is None:
            await WebSocketHandler._request_signatures(room.room_id, context)
            return
        await WebSocketHandler._start_session(room.room_id, context)

    @staticmethod
    async def _handle_move(msg: MoveMessage, websocket: WebSocket, context: AppContext) -> None:
        """Apply a move through the game engine and record it in the audit trail"""
        identity, room = WebSocketHandler._bound_identity(websocket, context)
        if room.phase != RoomPhase.PLAYING or room.game_state is None:
            raise InvalidPayload("Game has not started")

        result = context.engine.apply_move(room.game_state, identity, msg.direction)
        if not result.ok:
            raise InvalidPayload(result.reason or "Move rejected")

        room.game_state = result.state
        room.record_move(identity)

        session = context.arena.get_active(room.room_id)
        if session is not None:
            move = context.arena.append_move(session.session_id, identity, msg.direction)
            if move.sequence % CHECKPOINT_EVERY_MOVES == 0:
                context.game_loop.spawn(
                    context.ledger.checkpoint(
                        session.session_id,
                        {"scores": getattr(room.game_state, "scores", {}), "game_time": move.sequence},
                    ),
                    f"checkpoint-{session.session_id}-{move.sequence}",
                )

        await context.rooms.broadcast_to_room(
            room.room_id,
            server_message("game:update", roomId=room.room_id, gameState=state_payload(room.game_state)),
        )

    @staticmethod
    async def _handle_get_available_rooms(websocket: WebSocket, context: AppContext) -> None:
        rooms = [
            {"roomId": s.room_id, "hostAddress": s.host_address, "createdAt": s.created_at}
            for s in context.rooms.available_rooms()
        ]
        await websocket.send_json(server_message("room:available", rooms=rooms))

    @staticmethod
    def _room_state(room: Room) -> dict:
        return server_message(
            "room:state",
            roomId=room.room_id,
            phase=room.phase.value,
            occupants=room.occupants,
            gameState=state_payload(room.game_state),
        )

    @staticmethod
    async def broadcast_online_users(context: AppContext) -> None:
        message = server_message("onlineUsers", count=context.rooms.online_count)
        for websocket in list(context.clients):
            if is_open(websocket):
                try:
                    await websocket.send_json(message)
                except RuntimeError:
                    context.clients.discard(websocket)
