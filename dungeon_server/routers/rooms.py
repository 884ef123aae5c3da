from fastapi import APIRouter, HTTPException

from ..dependencies import ContextDep
from ..errors import RoomNotFound
from ..models import RoomSummary

router = APIRouter()


@router.get("/rooms", response_model=list[RoomSummary])
async def get_rooms(context: ContextDep):
    return context.rooms.available_rooms()


@router.get("/rooms/{room_id}", response_model=RoomSummary)
async def get_room(room_id: str, context: ContextDep):
    try:
        return context.rooms.require(room_id).summary()
    except RoomNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.get("/health")
async def health(context: ContextDep):
    settlement = context.settlement
    return {
        "settlement": settlement.status.value if settlement else "disabled",
        "rooms": len(context.rooms.rooms),
        "online": context.rooms.online_count,
        "active_sessions": len(context.arena.active_sessions),
    }
