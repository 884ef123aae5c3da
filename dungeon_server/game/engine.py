"""Game engine collaborator.

The session coordinator only relies on the three operations of
``GameEngine``. ``GridEngine`` is a small deterministic dungeon used as the
default so the server runs end to end.
"""

import random
from typing import Any, Protocol

from pydantic import BaseModel, Field

from ..models.session import Outcome

DIRECTIONS = {
    "UP": (0, -1),
    "DOWN": (0, 1),
    "LEFT": (-1, 0),
    "RIGHT": (1, 0),
}


class MoveResult(BaseModel):
    ok: bool
    state: Any = None
    reason: str | None = None


class TerminalResult(BaseModel):
    over: bool
    outcome: Outcome | None = None


class GameEngine(Protocol):
    def create_instance(self, participant: str) -> Any: ...

    def apply_move(self, state: Any, participant: str, action: Any) -> MoveResult: ...

    def is_terminal(self, state: Any) -> TerminalResult: ...


class Actor(BaseModel):
    id: str
    x: int
    y: int
    hp: int
    damage: int
    is_player: bool = False
    eoa: str | None = None


class GridState(BaseModel):
    width: int
    height: int
    player: Actor
    enemies: list[Actor] = Field(default_factory=list)
    defeated: int = 0
    turn: int = 0

    @property
    def scores(self) -> dict[str, int]:
        return {self.player.eoa: self.defeated} if self.player.eoa else {}


class GridEngine:
    def __init__(
        self,
        width: int = 12,
        height: int = 12,
        enemy_count: int = 4,
        seed: int = 12345,
        player_hp: int = 30,
        player_damage: int = 6,
        enemy_hp: int = 10,
        enemy_damage: int = 3,
    ):
        self.width = width
        self.height = height
        self.enemy_count = enemy_count
        self.seed = seed
        self.player_hp = player_hp
        self.player_damage = player_damage
        self.enemy_hp = enemy_hp
        self.enemy_damage = enemy_damage

    def create_instance(self, participant: str) -> GridState:
        rng = random.Random(self.seed)
        cells = [(x, y) for x in range(self.width) for y in range(self.height)]
        rng.shuffle(cells)
        (px, py), enemy_cells = cells[0], cells[1 : self.enemy_count + 1]
        return GridState(
            width=self.width,
            height=self.height,
            player=Actor(
                id="player",
                x=px,
                y=py,
                hp=self.player_hp,
                damage=self.player_damage,
                is_player=True,
                eoa=participant,
            ),
            enemies=[
                Actor(id=f"enemy_{i}", x=x, y=y, hp=self.enemy_hp, damage=self.enemy_damage)
                for i, (x, y) in enumerate(enemy_cells, start=1)
            ],
        )

    def apply_move(self, state: GridState, participant: str, action: Any) -> MoveResult:
        if state.player.eoa != participant:
            return MoveResult(ok=False, reason="Player not in this game")
        if action not in DIRECTIONS:
            return MoveResult(ok=False, reason=f"Invalid direction {action!r}")
        if self.is_terminal(state).over:
            return MoveResult(ok=False, reason="Game is over")

        state = state.model_copy(deep=True)
        dx, dy = DIRECTIONS[action]
        x, y = state.player.x + dx, state.player.y + dy
        if not (0 <= x < state.width and 0 <= y < state.height):
            return MoveResult(ok=False, reason="Blocked")

        target = next((e for e in state.enemies if (e.x, e.y) == (x, y)), None)
        if target is None:
            state.player.x, state.player.y = x, y
        else:
            target.hp -= state.player.damage
            if target.hp <= 0:
                state.enemies.remove(target)
                state.defeated += 1
            else:
                state.player.hp = max(0, state.player.hp - target.damage)
        state.turn += 1
        return MoveResult(ok=True, state=state)

    def is_terminal(self, state: GridState) -> TerminalResult:
        scores = state.scores
        if not state.enemies:
            return TerminalResult(
                over=True,
                outcome=Outcome(winner=state.player.eoa, end_condition="cleared", scores=scores),
            )
        if state.player.hp <= 0:
            return TerminalResult(
                over=True,
                outcome=Outcome(winner=None, end_condition="defeated", scores=scores),
            )
        return TerminalResult(over=False)
