import pytest

from dungeon_server.services import (
    SessionArena,
    SessionLedger,
    SessionNegotiator,
    SettlementClient,
)
from tests.fakes import SERVICE_KEY, FakeConnector


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
async def settlement(connector):
    client = SettlementClient(
        "ws://settlement.test/ws",
        SERVICE_KEY,
        connector=connector,
        auth_timeout=1,
        request_timeout=0.5,
        submission_timeout=0.5,
    )
    await client.connect()
    yield client
    await client.disconnect()


@pytest.fixture
def arena():
    return SessionArena()


@pytest.fixture
def ledger(settlement, arena):
    return SessionLedger(settlement, arena)


@pytest.fixture
def negotiator(settlement, arena, ledger):
    return SessionNegotiator(settlement, arena, ledger, bet_amount="5")
