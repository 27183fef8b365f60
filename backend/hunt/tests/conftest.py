import pytest

from hunt.logic.settings import GameSettings
from hunt.messaging.router import MessageRouter
from hunt.session.gateway import SessionGateway
from hunt.tests.mocks import FixedItemSelector, MockConnection


@pytest.fixture
def settings():
    """Slow timers: transitions in unit tests are driven by hand, never by the clock."""
    return GameSettings(
        countdown_seconds=2,
        countdown_tick_seconds=30,
        round_duration_ms=60_000,
        inter_round_delay_ms=30_000,
    )


@pytest.fixture
def item_selector():
    return FixedItemSelector()


@pytest.fixture
async def gateway(settings, item_selector):
    gateway = SessionGateway(settings, item_selector=item_selector)
    yield gateway
    gateway.shutdown()


@pytest.fixture
def message_router(gateway):
    return MessageRouter(gateway)


@pytest.fixture
def mock_connection():
    return MockConnection()
