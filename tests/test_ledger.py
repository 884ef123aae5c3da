import json
import logging

import pytest

from dungeon_server.errors import SessionNotFound
from dungeon_server.models import AllocationEntry, LedgerEventName, Outcome
from dungeon_server.services import ActiveSession, AuditTrail, final_allocations
from tests.fakes import PLAYER_ADDRESS, PLAYER_KEY, RIVAL_ADDRESS, RIVAL_KEY, open_session

pytestmark = pytest.mark.anyio


def session_data(envelope) -> dict:
    return json.loads(envelope["req"][2]["session_data"])


def make_session(*players: str, service: str = "0xService") -> ActiveSession:
    return ActiveSession(
        session_id="S1",
        room_id="room-1",
        participant_order=[*players, service],
        allocations=[AllocationEntry(participant=p, amount="5") for p in players],
        bet_amount="5",
        audit=AuditTrail(),
    )


def test_winner_takes_the_pot():
    session = make_session(PLAYER_ADDRESS, RIVAL_ADDRESS)

    allocations = final_allocations(session, RIVAL_ADDRESS)

    assert {a.participant: a.amount for a in allocations} == {
        PLAYER_ADDRESS: "0",
        RIVAL_ADDRESS: "10",
    }


def test_tie_refunds_contributions():
    session = make_session(PLAYER_ADDRESS, RIVAL_ADDRESS)

    allocations = final_allocations(session, None)

    assert [(a.participant, a.amount) for a in allocations] == [
        (PLAYER_ADDRESS, "5"),
        (RIVAL_ADDRESS, "5"),
    ]
    assert allocations[0] is not session.allocations[0]


def test_service_winner_gets_an_allocation_row():
    session = make_session(PLAYER_ADDRESS)

    allocations = final_allocations(session, "0xService")

    assert allocations[-1].participant == "0xService"
    assert allocations[-1].amount == "5"
    assert allocations[0].amount == "0"


async def test_checkpoint_failure_is_advisory(negotiator, ledger, arena, connector, caplog):
    session = await open_session(negotiator, "room-1", [PLAYER_KEY])
    for direction in ("UP", "LEFT", "DOWN"):
        arena.append_move(session.session_id, PLAYER_ADDRESS, direction)
    connector.current.mute.add("submit_app_state")

    with caplog.at_level(logging.WARNING):
        assert await ledger.checkpoint(session.session_id, {"scores": {PLAYER_ADDRESS: 1}}) is False

    assert "Checkpoint for session S1 failed" in caplog.text
    assert arena.get_active("room-1") is session
    sent = connector.current.requests("submit_app_state")[0]
    assert len(session_data(sent)["moveLog"]) == 3


async def test_checkpoint_keeps_allocations(negotiator, ledger, arena, connector):
    session = await open_session(negotiator, "room-1", [PLAYER_KEY])
    arena.append_move(session.session_id, PLAYER_ADDRESS, "UP")

    assert await ledger.checkpoint(session.session_id, {"scores": {PLAYER_ADDRESS: 0}, "game_time": 1})

    sent = connector.current.requests("submit_app_state")[0]
    params = sent["req"][2]
    assert params["app_session_id"] == "S1"
    assert params["allocations"] == [
        {"participant": PLAYER_ADDRESS, "asset": "usdc", "amount": "5"}
    ]
    metadata = session_data(sent)
    assert metadata["gameState"] == "playing"
    assert metadata["currentScores"] == {PLAYER_ADDRESS: 0}
    assert session.audit.fee_ledger[-1].event == LedgerEventName.CHECKPOINT


async def test_checkpoint_of_unknown_session_is_ignored(ledger):
    assert await ledger.checkpoint("missing") is False


async def test_close_pays_winner_and_forgets_session(negotiator, ledger, arena, connector):
    session = await open_session(negotiator, "room-1", [PLAYER_KEY, RIVAL_KEY])

    closed = await ledger.close(
        session.session_id, Outcome(winner=RIVAL_ADDRESS.lower(), end_condition="cleared")
    )

    assert closed
    assert arena.get_active("room-1") is None
    sent = connector.current.requests("close_app_session")[0]
    assert sent["req"][2]["allocations"] == [
        {"participant": PLAYER_ADDRESS, "asset": "usdc", "amount": "0"},
        {"participant": RIVAL_ADDRESS, "asset": "usdc", "amount": "10"},
    ]
    metadata = session_data(sent)
    assert metadata["winner"] == RIVAL_ADDRESS
    assert [e["event"] for e in metadata["feeLedger"]] == ["created", "activated", "closed"]


async def test_close_on_tie_refunds(negotiator, ledger, connector):
    session = await open_session(negotiator, "room-1", [PLAYER_KEY, RIVAL_KEY])

    assert await ledger.close(session.session_id, Outcome())

    sent = connector.current.requests("close_app_session")[0]
    assert [a["amount"] for a in sent["req"][2]["allocations"]] == ["5", "5"]
    assert session_data(sent)["winner"] is None


async def test_non_participant_winner_is_refunded(negotiator, ledger, connector):
    session = await open_session(negotiator, "room-1", [PLAYER_KEY])

    assert await ledger.close(session.session_id, Outcome(winner=RIVAL_ADDRESS))

    sent = connector.current.requests("close_app_session")[0]
    assert sent["req"][2]["allocations"][0]["amount"] == "5"


async def test_close_failure_is_logged_and_kept(negotiator, ledger, arena, connector, caplog):
    session = await open_session(negotiator, "room-1", [PLAYER_KEY])
    connector.current.reject["close_app_session"] = "channel frozen"

    with caplog.at_level(logging.ERROR):
        assert await ledger.close(session.session_id, Outcome(winner=PLAYER_ADDRESS)) is False

    assert session.close_failed
    assert arena.get_active("room-1") is session
    assert "Closing session S1 failed" in caplog.text


async def test_close_of_unknown_session_raises(ledger):
    with pytest.raises(SessionNotFound):
        await ledger.close("missing", Outcome())


async def test_negotiator_close_delegates_by_room(negotiator, arena):
    await open_session(negotiator, "room-1", [PLAYER_KEY])

    assert await negotiator.close("room-1", Outcome(winner=PLAYER_ADDRESS))
    assert await negotiator.close("room-1", Outcome()) is False
    assert arena.active_sessions == []


async def test_checkpoint_survives_dropped_connection(negotiator, ledger, arena, connector):
    session = await open_session(negotiator, "room-1", [PLAYER_KEY])
    arena.append_move(session.session_id, PLAYER_ADDRESS, "UP")
    connector.current.drop_on("submit_app_state")

    assert await ledger.checkpoint(session.session_id) is False

    assert arena.get_active("room-1") is session
    assert session.audit.fee_ledger[-1].event == LedgerEventName.CHECKPOINT


async def test_close_on_dropped_connection_is_flagged(negotiator, ledger, arena, connector, caplog):
    session = await open_session(negotiator, "room-1", [PLAYER_KEY])
    connector.current.drop_on("close_app_session")

    with caplog.at_level(logging.ERROR):
        assert await ledger.close(session.session_id, Outcome(winner=PLAYER_ADDRESS)) is False

    assert session.close_failed
    assert arena.get_active("room-1") is session
    assert "reconciled out of band" in caplog.text
