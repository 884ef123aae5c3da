"""Append-only audit trail embedded in every session payload.

The move log and fee ledger let an external auditor replay a session
without access to live server state. Entries are frozen once written and
the lists only ever grow.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from .. import config
from ..models.rpc import now_ms
from ..models.session import LedgerEvent, LedgerEventName, Move

log = logging.getLogger(__name__)


def iso(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat()


class AuditTrail(BaseModel):
    move_log: list[Move] = Field(default_factory=list)
    fee_ledger: list[LedgerEvent] = Field(default_factory=list)
    moves_by_participant: dict[str, int] = Field(default_factory=dict)

    def append_move(self, participant: str, action: Any, timestamp: int | None = None) -> Move:
        move = Move(
            participant=participant,
            action=action,
            timestamp=timestamp if timestamp is not None else now_ms(),
            sequence=len(self.move_log) + 1,
        )
        self.move_log.append(move)
        self.moves_by_participant[participant] = self.moves_by_participant.get(participant, 0) + 1
        log.debug(f"Move #{move.sequence} recorded: {participant} -> {action}")
        return move

    def record(
        self,
        event: LedgerEventName,
        actor: str,
        amount: str | None = None,
        timestamp: int | None = None,
        **details: Any,
    ) -> LedgerEvent:
        entry = LedgerEvent(
            event=event,
            timestamp=timestamp if timestamp is not None else now_ms(),
            actor=actor,
            amount=amount,
            details=details,
        )
        self.fee_ledger.append(entry)
        return entry

    def moves_for(self, participant: str) -> int:
        return self.moves_by_participant.get(participant, 0)

    def fee_ledger_payload(self) -> list[dict[str, Any]]:
        return [
            {**entry.model_dump(mode="json"), "timestampISO": iso(entry.timestamp)}
            for entry in self.fee_ledger
        ]

    def move_log_payload(self) -> list[dict[str, Any]]:
        return [move.model_dump(mode="json") for move in self.move_log]


def session_metadata(
    trail: AuditTrail,
    participants: list[str],
    game_state: str,
    bet_amount: str,
    total_pot: str,
    server_address: str,
    start_time: int,
    currency: str = config.CURRENCY,
    server_fee: str = "0",
    **extra: Any,
) -> dict[str, Any]:
    """Render the metadata payload carried as ``session_data`` on every submission."""
    metadata = {
        "gameType": config.GAME_TYPE,
        "version": config.GAME_VERSION,
        "protocol": config.PROTOCOL_VERSION,
        "betAmount": bet_amount,
        "currency": currency,
        "totalPot": total_pot,
        "serverFee": server_fee,
        "feeLedger": trail.fee_ledger_payload(),
        "startTime": start_time,
        "createdAt": iso(start_time),
        "gameState": game_state,
        "moveLog": trail.move_log_payload(),
        "totalMoves": len(trail.move_log),
        "movesByParticipant": {p: trail.moves_for(p) for p in participants},
        "serverAddress": server_address,
    }
    metadata.update(extra)
    return metadata
