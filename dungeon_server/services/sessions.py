import logging
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from ..errors import QuorumIncomplete, SessionNotFound
from ..models.rpc import now_ms
from ..models.session import AllocationEntry, ChannelDefinition, LedgerEventName, Move
from .audit import AuditTrail

log = logging.getLogger(__name__)


def total_contribution(allocations: list[AllocationEntry], participants: list[str]) -> str:
    total = sum(
        (Decimal(a.amount) for a in allocations if a.participant in participants),
        Decimal(0),
    )
    return str(total)


class PendingSession(BaseModel):
    room_id: str
    definition: ChannelDefinition
    allocations: list[AllocationEntry]
    request_to_sign: list[Any]
    service_signature: str
    collected_signatures: dict[str, str] = Field(default_factory=dict)
    bet_amount: str
    audit: AuditTrail
    created_at: int = Field(default_factory=now_ms)

    @property
    def nonce(self) -> int:
        return self.definition.nonce

    @property
    def participant_order(self) -> list[str]:
        return self.definition.participants

    @property
    def players(self) -> list[str]:
        return self.definition.participants[:-1]

    @property
    def service_address(self) -> str:
        return self.definition.participants[-1]

    @property
    def required_signatures(self) -> int:
        return self.definition.required_player_signatures

    @property
    def has_quorum(self) -> bool:
        return len(self.collected_signatures) == self.required_signatures

    def missing_signers(self) -> list[str]:
        return [p for p in self.players if p not in self.collected_signatures]

    def proposal(self) -> dict[str, Any]:
        params = self.request_to_sign[2]
        return {
            "roomId": self.room_id,
            "appSessionData": params,
            "appDefinition": self.definition.model_dump(),
            "participants": list(self.participant_order),
            "requestToSign": self.request_to_sign,
        }


class ActiveSession(BaseModel):
    session_id: str
    room_id: str
    participant_order: list[str]
    allocations: list[AllocationEntry]
    bet_amount: str
    audit: AuditTrail
    created_at: int = Field(default_factory=now_ms)
    close_failed: bool = False

    @property
    def players(self) -> list[str]:
        return self.participant_order[:-1]

    @property
    def service_address(self) -> str:
        return self.participant_order[-1]

    @property
    def total_pot(self) -> str:
        return total_contribution(self.allocations, self.players)


class SessionArena:
    """Pending and active sessions, keyed by room id."""

    def __init__(self) -> None:
        self._pending: dict[str, PendingSession] = {}
        self._active: dict[str, ActiveSession] = {}
        self._room_by_session: dict[str, str] = {}

    def get_pending(self, room_id: str) -> PendingSession | None:
        return self._pending.get(room_id)

    def put_pending(self, pending: PendingSession) -> None:
        self._pending[pending.room_id] = pending

    def get_active(self, room_id: str) -> ActiveSession | None:
        return self._active.get(room_id)

    def active_by_session_id(self, session_id: str) -> ActiveSession | None:
        room_id = self._room_by_session.get(session_id)
        return self._active.get(room_id) if room_id is not None else None

    def require_active(self, session_id: str) -> ActiveSession:
        session = self.active_by_session_id(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    @property
    def active_sessions(self) -> list[ActiveSession]:
        return list(self._active.values())

    def activate(self, room_id: str, session_id: str) -> ActiveSession:
        pending = self._pending.get(room_id)
        if pending is None:
            raise SessionNotFound(room_id)
        if not pending.has_quorum:
            raise QuorumIncomplete(room_id, pending.missing_signers())

        audit = pending.audit
        audit.record(
            LedgerEventName.ACTIVATED,
            actor=pending.service_address,
            amount=total_contribution(pending.allocations, pending.players),
            session_id=session_id,
            fee_charged="0",
            fee_used=True,
            all_signatures_collected=True,
        )
        session = ActiveSession(
            session_id=session_id,
            room_id=room_id,
            participant_order=list(pending.participant_order),
            allocations=list(pending.allocations),
            bet_amount=pending.bet_amount,
            audit=audit,
        )
        self._active[room_id] = session
        self._room_by_session[session_id] = room_id
        del self._pending[room_id]
        log.info(f"Active session {session_id} stored for room {room_id}")
        return session

    def drop_active(self, session_id: str) -> None:
        room_id = self._room_by_session.pop(session_id, None)
        if room_id is not None:
            self._active.pop(room_id, None)
            log.info(f"Session {session_id} deleted (remaining: {len(self._active)})")

    def append_move(
        self, session_id: str, participant: str, action: Any, timestamp: int | None = None
    ) -> Move:
        return self.require_active(session_id).audit.append_move(participant, action, timestamp)

    def discard_room(self, room_id: str) -> None:
        """Forget a room's pending proposal; active sessions outlive their room."""
        self._pending.pop(room_id, None)
