import json

import pytest

from dungeon_server.auth.signer import address_of
from dungeon_server.errors import (
    InvalidPayload,
    LedgerRejected,
    LedgerTimeout,
    QuorumIncomplete,
    SignatureMalformed,
)
from dungeon_server.models import LedgerEventName
from dungeon_server.services import ConnectionStatus, SessionNegotiator, WeightPolicy
from tests.fakes import (
    PLAYER_ADDRESS,
    PLAYER_KEY,
    RIVAL_ADDRESS,
    RIVAL_KEY,
    SERVICE_KEY,
    open_session,
    sign_as,
)

pytestmark = pytest.mark.anyio


def test_default_policy_lets_service_reach_quorum_alone():
    policy = WeightPolicy()

    assert policy.weights(2) == [0, 0, 100]
    assert policy.total(2) >= policy.quorum
    assert policy.service_weight >= policy.quorum


async def test_single_player_session_activates(negotiator, arena, settlement, connector):
    pending = await negotiator.propose("room-1", [PLAYER_ADDRESS])

    assert pending.definition.participants == [PLAYER_ADDRESS, settlement.address]
    assert pending.definition.weights == [0, 100]
    assert pending.definition.quorum == 100
    assert pending.required_signatures == 1
    assert [a.participant for a in pending.allocations] == [PLAYER_ADDRESS]
    assert [e.event for e in pending.audit.fee_ledger] == [LedgerEventName.CREATED]

    signature = sign_as(PLAYER_KEY, pending.request_to_sign)
    assert negotiator.collect_signature("room-1", PLAYER_ADDRESS, signature)

    session = await negotiator.submit("room-1")

    assert session.session_id == "S1"
    assert arena.get_pending("room-1") is None
    assert arena.get_active("room-1") is session
    assert [e.event for e in session.audit.fee_ledger] == [
        LedgerEventName.CREATED,
        LedgerEventName.ACTIVATED,
    ]
    envelope = connector.current.requests("create_app_session")[0]
    assert envelope["req"] == pending.request_to_sign
    assert envelope["sig"] == [signature, pending.service_signature]


async def test_proposal_metadata_carries_audit_trail(negotiator):
    pending = await negotiator.propose("room-1", [PLAYER_ADDRESS, RIVAL_ADDRESS])

    params = pending.request_to_sign[2]
    metadata = json.loads(params["session_data"])

    assert pending.request_to_sign[1] == "create_app_session"
    assert metadata["totalPot"] == "10"
    assert metadata["betAmount"] == "5"
    assert metadata["feeLedger"][0]["event"] == "created"
    assert metadata["moveLog"] == []
    assert pending.proposal()["requestToSign"] == pending.request_to_sign


async def test_propose_is_idempotent(negotiator, connector):
    first = await negotiator.propose("room-1", [PLAYER_ADDRESS])
    second = await negotiator.propose("room-1", [PLAYER_ADDRESS])

    assert second is first
    assert second.nonce == first.nonce


async def test_propose_without_players_fails(negotiator):
    with pytest.raises(InvalidPayload):
        await negotiator.propose("room-1", [])


async def test_propose_rejects_policy_that_cannot_reach_quorum(settlement, arena, ledger):
    negotiator = SessionNegotiator(
        settlement, arena, ledger, policy=WeightPolicy(service_weight=10, quorum=100)
    )

    with pytest.raises(InvalidPayload):
        await negotiator.propose("room-1", [PLAYER_ADDRESS])
    assert arena.get_pending("room-1") is None


async def test_malformed_signature_is_not_stored(negotiator):
    pending = await negotiator.propose("room-1", [PLAYER_ADDRESS])

    with pytest.raises(SignatureMalformed):
        negotiator.collect_signature("room-1", PLAYER_ADDRESS, "0xdeadbeef")

    assert pending.collected_signatures == {}
    assert not pending.has_quorum


async def test_non_participant_signature_is_rejected(negotiator):
    pending = await negotiator.propose("room-1", [PLAYER_ADDRESS])

    with pytest.raises(InvalidPayload):
        negotiator.collect_signature(
            "room-1", RIVAL_ADDRESS, sign_as(RIVAL_KEY, pending.request_to_sign)
        )
    assert pending.collected_signatures == {}


async def test_submit_before_quorum_fails(negotiator, connector):
    pending = await negotiator.propose("room-1", [PLAYER_ADDRESS, RIVAL_ADDRESS])
    negotiator.collect_signature(
        "room-1", RIVAL_ADDRESS.lower(), sign_as(RIVAL_KEY, pending.request_to_sign)
    )

    with pytest.raises(QuorumIncomplete) as excinfo:
        await negotiator.submit("room-1")

    assert excinfo.value.missing == [PLAYER_ADDRESS]
    assert connector.current.requests("create_app_session") == []


async def test_signatures_follow_definition_order(negotiator, connector):
    pending = await negotiator.propose("room-1", [PLAYER_ADDRESS, RIVAL_ADDRESS])
    rival_sig = sign_as(RIVAL_KEY, pending.request_to_sign)
    player_sig = sign_as(PLAYER_KEY, pending.request_to_sign)

    assert not negotiator.collect_signature("room-1", RIVAL_ADDRESS, rival_sig)
    assert negotiator.collect_signature("room-1", PLAYER_ADDRESS, player_sig)

    request, signatures = negotiator.assemble("room-1")
    assert signatures == [player_sig, rival_sig, pending.service_signature]

    await negotiator.submit("room-1")
    assert connector.current.requests("create_app_session")[0]["sig"] == signatures


async def test_rejected_submission_keeps_pending_for_retry(negotiator, arena, connector):
    pending = await negotiator.propose("room-1", [PLAYER_ADDRESS])
    negotiator.collect_signature(
        "room-1", PLAYER_ADDRESS, sign_as(PLAYER_KEY, pending.request_to_sign)
    )
    connector.current.reject["create_app_session"] = "insufficient funds"

    with pytest.raises(LedgerRejected):
        await negotiator.submit("room-1")
    assert arena.get_pending("room-1") is pending
    assert arena.get_active("room-1") is None

    del connector.current.reject["create_app_session"]
    session = await negotiator.submit("room-1")

    first, second = connector.current.requests("create_app_session")
    assert first == second
    assert session.session_id == "S1"


async def test_timed_out_submission_keeps_pending(negotiator, arena, connector):
    pending = await negotiator.propose("room-1", [PLAYER_ADDRESS])
    negotiator.collect_signature(
        "room-1", PLAYER_ADDRESS, sign_as(PLAYER_KEY, pending.request_to_sign)
    )
    connector.current.mute.add("create_app_session")

    with pytest.raises(LedgerTimeout):
        await negotiator.submit("room-1")

    assert arena.get_pending("room-1") is pending
    assert pending.has_quorum


async def test_negotiator_without_settlement_client(arena, ledger):
    negotiator = SessionNegotiator(None, arena, ledger)

    with pytest.raises(LedgerRejected):
        await negotiator.propose("room-1", [PLAYER_ADDRESS])


async def test_two_rooms_get_distinct_sessions(negotiator, arena):
    first = await open_session(negotiator, "room-1", [PLAYER_KEY])
    second = await open_session(negotiator, "room-2", [RIVAL_KEY])

    assert {first.session_id, second.session_id} == {"S1", "S2"}
    assert len(arena.active_sessions) == 2
    assert first.service_address != address_of(SERVICE_KEY)


async def test_dropped_connection_during_submit_is_retryable(negotiator, arena, settlement, connector):
    pending = await negotiator.propose("room-1", [PLAYER_ADDRESS])
    negotiator.collect_signature(
        "room-1", PLAYER_ADDRESS, sign_as(PLAYER_KEY, pending.request_to_sign)
    )
    connector.current.drop_on("create_app_session")

    with pytest.raises(LedgerRejected):
        await negotiator.submit("room-1")

    assert settlement.status == ConnectionStatus.DISCONNECTED
    assert arena.get_pending("room-1") is pending

    session = await negotiator.submit("room-1")

    assert len(connector.connections) == 2
    assert session.session_id == "S1"
