from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .. import config


class LedgerEventName(str, Enum):
    CREATED = "created"
    ACTIVATED = "activated"
    CHECKPOINT = "checkpoint"
    CLOSED = "closed"


class AllocationEntry(BaseModel):
    participant: str
    asset: str = config.CURRENCY
    amount: str = "0"


class Move(BaseModel):
    model_config = ConfigDict(frozen=True)

    participant: str
    action: Any
    timestamp: int
    sequence: int


class LedgerEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event: LedgerEventName
    timestamp: int
    actor: str
    amount: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class ChannelDefinition(BaseModel):
    protocol: str
    participants: list[str]
    weights: list[int]
    quorum: int
    challenge: int = 0
    nonce: int

    @property
    def required_player_signatures(self) -> int:
        # the settlement service is always the last participant
        return len(self.participants) - 1


class Outcome(BaseModel):
    """Terminal result reported by the game engine. ``winner`` is None on a tie."""

    winner: str | None = None
    end_condition: str = "tie"
    scores: dict[str, int] = Field(default_factory=dict)
