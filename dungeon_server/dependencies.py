from dataclasses import dataclass, field
from typing import Annotated

from fastapi import Depends, WebSocket
from starlette.requests import HTTPConnection

from .game import GameEngine, GameLoop, GridEngine, RoomManager
from .services import SessionArena, SessionLedger, SessionNegotiator, SettlementClient, WeightPolicy


@dataclass
class AppContext:
    """Everything a handler needs, passed explicitly instead of module globals."""

    rooms: RoomManager
    arena: SessionArena
    ledger: SessionLedger
    negotiator: SessionNegotiator
    game_loop: GameLoop
    engine: GameEngine
    settlement: SettlementClient | None = None
    clients: set[WebSocket] = field(default_factory=set)


def build_context(
    settlement: SettlementClient | None,
    engine: GameEngine | None = None,
    policy: WeightPolicy | None = None,
    **loop_options,
) -> AppContext:
    engine = engine or GridEngine()
    rooms = RoomManager()
    arena = SessionArena()
    ledger = SessionLedger(settlement, arena)
    negotiator = SessionNegotiator(settlement, arena, ledger, policy=policy)
    game_loop = GameLoop(rooms, engine, negotiator, **loop_options)
    return AppContext(
        rooms=rooms,
        arena=arena,
        ledger=ledger,
        negotiator=negotiator,
        game_loop=game_loop,
        engine=engine,
        settlement=settlement,
    )


def get_context(connection: HTTPConnection) -> AppContext:
    context = getattr(connection.app.state, "context", None)
    if context is None:
        raise RuntimeError("Application context not initialized")
    return context


ContextDep = Annotated[AppContext, Depends(get_context)]
