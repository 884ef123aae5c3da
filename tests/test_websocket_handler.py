import asyncio

import pytest

from dungeon_server.dependencies import build_context
from dungeon_server.routers.websocket_handler import WebSocketHandler
from tests.fakes import PLAYER_ADDRESS, PLAYER_KEY, CountingEngine, FakeWebSocket, sign_as

pytestmark = pytest.mark.anyio


@pytest.fixture
def context(settlement):
    return build_context(settlement, engine=CountingEngine(), interval=0.01, grace_delay=0.01)


async def wait_for(predicate, timeout: float = 1.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


async def signed_room(context) -> tuple[str, FakeWebSocket]:
    socket = FakeWebSocket()
    room_id = context.rooms.create_room(PLAYER_ADDRESS, socket)
    pending = await context.negotiator.propose(room_id, [PLAYER_ADDRESS])
    context.negotiator.collect_signature(
        room_id, PLAYER_ADDRESS, sign_as(PLAYER_KEY, pending.request_to_sign)
    )
    return room_id, socket


async def test_session_for_vanished_room_is_refunded(context, connector):
    room_id, socket = await signed_room(context)
    await context.rooms.close(room_id)

    await WebSocketHandler._start_session(room_id, context)

    await wait_for(lambda: not context.arena.active_sessions)
    (close,) = connector.current.requests("close_app_session")
    assert close["req"][2]["allocations"][0]["amount"] == "0"
    assert close["req"][2]["app_session_id"] == "S1"
    assert socket.of_type("game:started") == []
    assert not context.game_loop.is_running(room_id)


async def test_player_leaving_during_submission_still_settles(context, connector):
    room_id, socket = await signed_room(context)
    connection = connector.current

    def leave_then_acknowledge(request):
        # the player disconnects before the ledger answers
        context.rooms.unbind_connection(socket)
        context.arena.discard_room(room_id)
        connection.respond(request, "create_app_session", {"app_session_id": "S7"})

    connection.handlers["create_app_session"] = leave_then_acknowledge

    await WebSocketHandler._start_session(room_id, context)

    await wait_for(lambda: not context.arena.active_sessions)
    (close,) = connection.requests("close_app_session")
    assert close["req"][2]["app_session_id"] == "S7"
    assert context.rooms.get(room_id) is None


async def test_proposal_for_vanished_room_is_discarded(context, settlement, monkeypatch):
    socket = FakeWebSocket()
    room_id = context.rooms.create_room(PLAYER_ADDRESS, socket)
    reconnect = settlement.ensure_connected

    async def room_closes_while_reconnecting():
        await context.rooms.close(room_id)
        await reconnect()

    monkeypatch.setattr(settlement, "ensure_connected", room_closes_while_reconnecting)

    await WebSocketHandler._request_signatures(room_id, context)

    assert context.arena.get_pending(room_id) is None
    assert socket.of_type("appSession:signatureRequest") == []


async def test_started_session_begins_play(context):
    room_id, socket = await signed_room(context)

    await WebSocketHandler._start_session(room_id, context)

    (started,) = socket.of_type("game:started")
    assert started["sessionId"] == "S1"
    assert context.game_loop.is_running(room_id)
    await context.game_loop.shutdown()
