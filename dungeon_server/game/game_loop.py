import asyncio
import logging
from typing import Any, Coroutine

from pydantic import BaseModel

from .. import config
from ..models import RoomPhase, server_message
from ..models.session import Outcome
from ..services.negotiation import SessionNegotiator
from .engine import GameEngine
from .room_manager import RoomManager

log = logging.getLogger(__name__)


def state_payload(state: Any) -> Any:
    if isinstance(state, BaseModel):
        return state.model_dump(mode="json")
    return state


class GameLoop:
    """Polls running rooms for a terminal game state and drives session close."""

    def __init__(
        self,
        rooms: RoomManager,
        engine: GameEngine,
        negotiator: SessionNegotiator,
        interval: float = config.GAME_LOOP_INTERVAL,
        grace_delay: float = config.CLOSE_GRACE_DELAY,
    ):
        self.rooms = rooms
        self.engine = engine
        self.negotiator = negotiator
        self.interval = interval
        self.grace_delay = grace_delay
        self._timers: dict[str, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()

    def is_running(self, room_id: str) -> bool:
        task = self._timers.get(room_id)
        return task is not None and not task.done()

    def start(self, room_id: str) -> None:
        self.stop(room_id)
        log.info(f"Starting game over detection loop for room {room_id}")
        task = asyncio.create_task(self._poll(room_id), name=f"poll-{room_id}")
        task.add_done_callback(self._task_done)
        self._timers[room_id] = task

    def stop(self, room_id: str) -> None:
        task = self._timers.pop(room_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def spawn(self, coro: Coroutine, label: str) -> asyncio.Task:
        """Run a background coroutine whose failure is logged rather than lost."""
        task = asyncio.create_task(coro)
        task.set_name(label)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error(f"Background task {task.get_name()} failed: {exc!r}")

    async def _poll(self, room_id: str) -> None:
        while True:
            await asyncio.sleep(self.interval)

            room = self.rooms.get(room_id)
            if room is None or room.phase != RoomPhase.PLAYING or room.game_state is None:
                self.stop(room_id)
                return

            result = self.engine.is_terminal(room.game_state)
            if result.over:
                self.stop(room_id)
                await self.finish(room_id, result.outcome or Outcome())
                return

    async def finish(self, room_id: str, outcome: Outcome) -> None:
        room = self.rooms.get(room_id)
        if room is None or not room.advance(RoomPhase.CLOSING):
            return

        log.info(f"Game over for room {room_id}, winner: {outcome.winner or 'TIE'}")
        session = self.negotiator.arena.get_active(room_id)
        await self.rooms.broadcast_to_room(
            room_id,
            server_message(
                "game:over",
                roomId=room_id,
                sessionId=session.session_id if session else None,
                winner=outcome.winner,
                endCondition=outcome.end_condition,
                scores=outcome.scores,
                gameState=state_payload(room.game_state),
            ),
        )

        self.spawn(self.negotiator.close(room_id, outcome), f"close-session-{room_id}")
        self.rooms.schedule_close(room_id, self.grace_delay)

    async def shutdown(self) -> None:
        tasks = list(self._timers.values()) + list(self._tasks)
        self._timers.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
