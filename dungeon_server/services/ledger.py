import json
import logging
from decimal import Decimal
from typing import Any

from .. import config
from ..auth.signer import canonical_address
from ..errors import DungeonServerError, LedgerRejected
from ..models.rpc import now_ms
from ..models.session import AllocationEntry, LedgerEventName, Outcome
from .audit import iso, session_metadata
from .rpc_client import SettlementClient
from .sessions import ActiveSession, SessionArena

log = logging.getLogger(__name__)

SUBMIT_APP_STATE = "submit_app_state"
CLOSE_APP_SESSION = "close_app_session"


def final_allocations(session: ActiveSession, winner: str | None) -> list[AllocationEntry]:
    """Winner takes the whole pot; with no winner every contribution is refunded."""
    if winner is None:
        return [a.model_copy() for a in session.allocations]

    pot = str(Decimal(session.total_pot))
    allocations = [
        AllocationEntry(
            participant=a.participant,
            asset=a.asset,
            amount=pot if a.participant == winner else "0",
        )
        for a in session.allocations
    ]
    if winner not in {a.participant for a in allocations}:
        asset = session.allocations[0].asset if session.allocations else config.CURRENCY
        allocations.append(AllocationEntry(participant=winner, asset=asset, amount=pot))
    return allocations


class SessionLedger:
    """Checkpoint and close submissions for active sessions."""

    def __init__(self, client: SettlementClient | None, arena: SessionArena):
        self.client = client
        self.arena = arena

    async def _submit(self, method: str, session: ActiveSession, allocations, metadata) -> Any:
        if self.client is None:
            raise LedgerRejected(method, "settlement service is not configured")
        await self.client.ensure_connected()

        params = {
            "app_session_id": session.session_id,
            "allocations": [a.model_dump() for a in allocations],
            "session_data": json.dumps(metadata),
        }
        request, signature = self.client.sign_request(method, params)
        return await self.client.submit(
            request, [signature], timeout=self.client.submission_timeout
        )

    async def checkpoint(self, session_id: str, snapshot: dict[str, Any] | None = None) -> bool:
        """Advisory state update; never raises and never redistributes funds."""
        session = self.arena.active_by_session_id(session_id)
        if session is None:
            log.debug(f"No active session {session_id} to checkpoint")
            return False

        snapshot = snapshot or {}
        now = now_ms()
        session.audit.record(
            LedgerEventName.CHECKPOINT,
            actor=session.service_address,
            timestamp=now,
            total_moves=len(session.audit.move_log),
        )
        metadata = session_metadata(
            session.audit,
            session.players,
            game_state="playing",
            bet_amount=session.bet_amount,
            total_pot=session.total_pot,
            server_address=session.service_address,
            start_time=session.created_at,
            appSessionId=session.session_id,
            currentScores=snapshot.get("scores", {}),
            gameTime=snapshot.get("game_time", 0),
            updateTime=now,
            elapsedTime=now - session.created_at,
            lastUpdate=iso(now),
        )
        try:
            await self._submit(SUBMIT_APP_STATE, session, session.allocations, metadata)
        except DungeonServerError as e:
            log.warning(f"Checkpoint for session {session_id} failed: {e.message}")
            return False

        log.info(f"App state submitted for session {session_id}")
        return True

    async def close(self, session_id: str, outcome: Outcome) -> bool:
        """Submit the final allocation. Failures are logged, never retried here."""
        session = self.arena.require_active(session_id)

        winner = canonical_address(outcome.winner) if outcome.winner else None
        if winner is not None and winner not in session.participant_order:
            log.warning(f"Winner {winner} is not a participant of {session_id}, refunding")
            winner = None

        allocations = final_allocations(session, winner)
        payouts = {a.participant: a.amount for a in allocations}
        now = now_ms()
        session.audit.record(
            LedgerEventName.CLOSED,
            actor=session.service_address,
            amount=session.total_pot,
            timestamp=now,
            winner=winner,
            payouts=payouts,
            server_payout=payouts.get(session.service_address, "0"),
        )
        metadata = session_metadata(
            session.audit,
            session.players,
            game_state="closed",
            bet_amount=session.bet_amount,
            total_pot=session.total_pot,
            server_address=session.service_address,
            start_time=session.created_at,
            appSessionId=session.session_id,
            winner=winner,
            endCondition=outcome.end_condition,
            finalScores=outcome.scores,
            payouts=payouts,
            endTime=now,
            duration=now - session.created_at,
            closedAt=iso(now),
        )
        log.info(f"Closing session {session_id}, winner: {winner or 'TIE'}")

        try:
            await self._submit(CLOSE_APP_SESSION, session, allocations, metadata)
        except DungeonServerError as e:
            session.close_failed = True
            log.error(
                f"Closing session {session_id} failed: {e.message}; "
                f"settlement is unresolved and must be reconciled out of band"
            )
            return False

        self.arena.drop_active(session_id)
        log.info(f"Session {session_id} closed and funds distributed")
        return True
