from unittest.mock import AsyncMock

import pytest

from hunt.logic.enums import ActionType
from hunt.messaging.router import MessageRouter
from hunt.server.rate_limit import RateLimit, SlidingWindowRateLimiter
from hunt.session.gateway import SessionGateway
from hunt.tests.mocks import MockConnection


class TestMessageRouter:
    @pytest.fixture
    async def setup(self, message_router):
        connection = MockConnection()
        await message_router.handle_connect(connection)
        return message_router, connection

    async def test_join_broadcasts_player_joined(self, setup):
        router, connection = setup
        await router.handle_message(connection, {"event": "joinGame", "name": "Alice"})

        [joined] = connection.events("playerJoined")
        assert joined["playerId"] == connection.connection_id
        assert joined["name"] == "Alice"
        assert joined["currentPlayers"] == [
            {"id": connection.connection_id, "name": "Alice", "score": 0, "streak": 0},
        ]

    async def test_validation_error_becomes_invalid_input(self, setup):
        router, connection = setup
        await router.handle_message(connection, {"event": "joinGame", "name": "A"})

        [error] = connection.sent_messages
        assert error["event"] == "error"
        assert error["type"] == "invalid_input"
        assert error["message"].startswith("joinGame.name")

    async def test_unknown_event_becomes_invalid_input(self, setup):
        router, connection = setup
        await router.handle_message(connection, {"event": "cheat"})
        assert connection.sent_messages[0]["type"] == "invalid_input"

    async def test_domain_error_becomes_error_event(self, setup):
        router, connection = setup
        await router.handle_message(connection, {"event": "submitItem", "prediction": "cup", "confidence": 0.9})

        [error] = connection.sent_messages
        assert error["type"] == "not_in_room"

    async def test_ping_answers_pong(self, setup):
        router, connection = setup
        await router.handle_message(connection, {"event": "ping"})
        assert connection.sent_messages == [{"event": "pong"}]

    async def test_message_rate_limit(self):
        limiter = SlidingWindowRateLimiter({ActionType.MESSAGE: RateLimit(max_actions=2, window_ms=10_000)})
        router = MessageRouter(SessionGateway(rate_limiter=limiter))
        connection = MockConnection()
        await router.handle_connect(connection)

        for _ in range(3):
            await router.handle_message(connection, {"event": "ping"})

        assert [m["event"] for m in connection.sent_messages] == ["pong", "pong", "error"]
        error = connection.sent_messages[-1]
        assert error["type"] == "rate_limit"
        assert error["remaining"] == 0
        assert 0 < error["resetInMs"] <= 10_000

    async def test_unexpected_exception_reports_internal_error(self, setup, gateway, caplog):
        router, connection = setup
        gateway.handle_ping = AsyncMock(side_effect=RuntimeError("boom"))

        await router.handle_message(connection, {"event": "ping"})

        assert connection.sent_messages == [
            {"event": "error", "type": "internal_error", "message": "Internal server error"},
        ]
        assert "unexpected error while handling message" in caplog.text

    async def test_disconnect_unregisters_connection(self, setup, gateway):
        router, connection = setup
        assert gateway.connection_count == 1
        await router.handle_disconnect(connection)
        assert gateway.connection_count == 0
