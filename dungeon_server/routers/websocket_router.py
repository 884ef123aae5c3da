import logging

from fastapi import APIRouter, WebSocket

from ..dependencies import ContextDep
from .websocket_handler import WebSocketHandler

log = logging.getLogger(__name__)
router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, context: ContextDep) -> None:
    """Main WebSocket endpoint for game clients"""
    await websocket.accept()
    try:
        await WebSocketHandler.handle_messages(websocket, context)
    except Exception as e:
        log.error(f"WebSocket error: {e!r}")
        raise
