"""Multi-party session negotiation.

``propose`` builds the channel definition and signs the request tuple with
the service key, ``collect_signature`` gathers player attestations, and
``submit`` assembles the envelope (player signatures in definition order,
service signature last) and hands it to the settlement service. A failed
submission leaves the pending session untouched so the same signatures and
nonce can be resubmitted.
"""

import json
import logging
from dataclasses import dataclass

from .. import config
from ..auth.signer import canonical_address, validate_signature_shape
from ..errors import InvalidPayload, LedgerRejected, QuorumIncomplete, SessionNotFound
from ..models.rpc import now_ms
from ..models.session import AllocationEntry, ChannelDefinition, LedgerEventName, Outcome
from .audit import AuditTrail, session_metadata
from .ledger import SessionLedger
from .rpc_client import SettlementClient
from .sessions import ActiveSession, PendingSession, SessionArena, total_contribution

log = logging.getLogger(__name__)

CREATE_APP_SESSION = "create_app_session"


@dataclass(frozen=True)
class WeightPolicy:
    """Authorization weights for a channel.

    The default grants the settlement service the whole quorum on its own:
    players hold zero voting weight and sign only to attest consent. This is
    the custodial trade-off the service is deployed with.
    """

    service_weight: int = config.SERVICE_WEIGHT
    player_weight: int = config.PLAYER_WEIGHT
    quorum: int = config.QUORUM

    def weights(self, player_count: int) -> list[int]:
        return [self.player_weight] * player_count + [self.service_weight]

    def total(self, player_count: int) -> int:
        return sum(self.weights(player_count))


class SessionNegotiator:
    def __init__(
        self,
        client: SettlementClient | None,
        arena: SessionArena,
        ledger: SessionLedger,
        policy: WeightPolicy | None = None,
        bet_amount: str = config.BET_AMOUNT,
        currency: str = config.CURRENCY,
    ):
        self.client = client
        self.arena = arena
        self.ledger = ledger
        self.policy = policy or WeightPolicy()
        self.bet_amount = bet_amount
        self.currency = currency

    def _require_client(self) -> SettlementClient:
        if self.client is None:
            raise LedgerRejected(CREATE_APP_SESSION, "settlement service is not configured")
        return self.client

    async def propose(self, room_id: str, players: list[str]) -> PendingSession:
        pending = self.arena.get_pending(room_id)
        if pending is not None:
            log.info(f"Reusing pending session for room {room_id} (nonce {pending.nonce})")
            return pending

        if not players:
            raise InvalidPayload(f"Room {room_id} has no players to propose a session for")

        client = self._require_client()
        await client.ensure_connected()

        # another handler may have proposed while we were reconnecting
        pending = self.arena.get_pending(room_id)
        if pending is not None:
            return pending

        players = [canonical_address(p) for p in players]
        service_address = canonical_address(client.address)
        weights = self.policy.weights(len(players))
        if sum(weights) < self.policy.quorum:
            raise InvalidPayload(
                f"Weights {weights} can never reach quorum {self.policy.quorum}"
            )

        nonce = now_ms()
        definition = ChannelDefinition(
            protocol=config.PROTOCOL_VERSION,
            participants=players + [service_address],
            weights=weights,
            quorum=self.policy.quorum,
            challenge=0,
            nonce=nonce,
        )
        allocations = [
            AllocationEntry(participant=p, asset=self.currency, amount=self.bet_amount)
            for p in players
        ]
        total_pot = total_contribution(allocations, players)

        audit = AuditTrail()
        audit.record(
            LedgerEventName.CREATED,
            actor=service_address,
            amount=total_pot,
            timestamp=nonce,
            fee_charged="0",
            fee_used=False,
            contributions={p: self.bet_amount for p in players},
            total_pot=total_pot,
        )
        metadata = session_metadata(
            audit,
            players,
            game_state="created",
            bet_amount=self.bet_amount,
            total_pot=total_pot,
            server_address=service_address,
            start_time=nonce,
            currency=self.currency,
            nonce=nonce,
        )
        params = {
            "definition": definition.model_dump(),
            "allocations": [a.model_dump() for a in allocations],
            "session_data": json.dumps(metadata),
        }
        request, service_signature = client.sign_request(CREATE_APP_SESSION, params)

        pending = PendingSession(
            room_id=room_id,
            definition=definition,
            allocations=allocations,
            request_to_sign=request,
            service_signature=service_signature,
            bet_amount=self.bet_amount,
            audit=audit,
        )
        self.arena.put_pending(pending)
        log.info(
            f"Pending session created for room {room_id} "
            f"(weights {weights}, quorum {definition.quorum}, nonce {nonce})"
        )
        return pending

    def collect_signature(self, room_id: str, address: str, signature: str) -> bool:
        """Store a player's signature; True once every player has signed."""
        pending = self.arena.get_pending(room_id)
        if pending is None:
            raise SessionNotFound(room_id)

        signature = validate_signature_shape(signature)
        address = canonical_address(address)
        if address not in pending.players:
            raise InvalidPayload(f"{address} is not a signer for room {room_id}")

        pending.collected_signatures[address] = signature
        log.info(
            f"Signature added for room {room_id} from {address} "
            f"({len(pending.collected_signatures)}/{pending.required_signatures})"
        )
        return pending.has_quorum

    def assemble(self, room_id: str) -> tuple[list, list[str]]:
        pending = self.arena.get_pending(room_id)
        if pending is None:
            raise SessionNotFound(room_id)

        missing = pending.missing_signers()
        if missing:
            raise QuorumIncomplete(room_id, missing)

        signatures = [pending.collected_signatures[p] for p in pending.players]
        signatures.append(pending.service_signature)
        return pending.request_to_sign, signatures

    async def submit(self, room_id: str) -> ActiveSession:
        request, signatures = self.assemble(room_id)
        pending = self.arena.get_pending(room_id)
        client = self._require_client()
        await client.ensure_connected()

        log.info(f"Submitting {CREATE_APP_SESSION} for room {room_id}")
        response = await client.submit(request, signatures, timeout=client.submission_timeout)

        session_id = None
        if isinstance(response, dict):
            session_id = response.get("app_session_id") or response.get("appSessionId")
        if not session_id:
            raise LedgerRejected(CREATE_APP_SESSION, "session created but no id returned")

        if self.arena.get_pending(room_id) is None:
            active = self.arena.get_active(room_id)
            if active is not None:
                return active
            # every acknowledged session becomes active so it can be settled
            log.warning(f"Pending session for room {room_id} was discarded during submission")
            self.arena.put_pending(pending)

        session = self.arena.activate(room_id, str(session_id))
        log.info(f"App session created with ID {session_id} for room {room_id}")
        return session

    async def close(self, room_id: str, outcome: Outcome) -> bool:
        session = self.arena.get_active(room_id)
        if session is None:
            log.warning(f"No active session for room {room_id}, skipping close")
            return False
        return await self.ledger.close(session.session_id, outcome)
