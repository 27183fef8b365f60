import pytest

from hunt.logic.enums import RoomState, RoundEndReason
from hunt.logic.exceptions import AlreadyInRoomError, NotInRoomError, RateLimitedError
from hunt.logic.settings import GameSettings
from hunt.messaging.types import SubmitItemMessage
from hunt.server.app import create_gateway
from hunt.server.rate_limit import SlidingWindowRateLimiter
from hunt.server.settings import HuntServerSettings
from hunt.session.gateway import SessionGateway
from hunt.session.recovery_cache import SessionRecoveryCache
from hunt.tests.mocks import MockConnection
from hunt.tests.unit.session.helpers import join_players, start_game, submit_at


class TestConstruction:
    def test_injected_collaborators_are_kept(self, settings):
        limiter = SlidingWindowRateLimiter()
        cache = SessionRecoveryCache(ttl_seconds=5)

        gateway = SessionGateway(settings, rate_limiter=limiter, recovery_cache=cache)

        assert gateway.rate_limiter is limiter
        assert gateway.recovery_cache is cache

    def test_server_settings_reach_the_recovery_cache(self):
        gateway = create_gateway(HuntServerSettings(recovery_ttl_seconds=7))
        assert gateway.recovery_cache.ttl_seconds == 7


class TestJoinGame:
    async def test_players_share_the_oldest_room(self, gateway):
        alice, bob = await join_players(gateway)
        room = gateway.registry.room_of(alice.connection_id)

        assert gateway.registry.room_of(bob.connection_id) is room
        assert room.player_names == ["Alice", "Bob"]

    async def test_player_joined_lists_current_players(self, gateway):
        alice, bob = await join_players(gateway)

        [first, second] = alice.events("playerJoined")
        assert first["playerId"] == alice.connection_id
        assert [p["name"] for p in second["currentPlayers"]] == ["Alice", "Bob"]
        assert second["currentPlayers"][1] == {"id": bob.connection_id, "name": "Bob", "score": 0, "streak": 0}

    async def test_full_room_spills_into_new_room(self, item_selector):
        gateway = SessionGateway(GameSettings(max_players=2, countdown_tick_seconds=30), item_selector=item_selector)
        alice, bob, carol = await join_players(gateway, ["Alice", "Bob", "Carol"])

        first = gateway.registry.room_of(alice.connection_id)
        second = gateway.registry.room_of(carol.connection_id)
        assert second is not first
        assert second.player_names == ["Carol"]
        assert gateway.registry.room_count == 2
        gateway.shutdown()

    async def test_second_join_rejected(self, gateway):
        [alice] = await join_players(gateway, ["Alice"])
        with pytest.raises(AlreadyInRoomError):
            await gateway.join_game(alice, "Alice again")

    async def test_join_attempts_are_rate_limited(self, gateway):
        [alice] = await join_players(gateway, ["Alice"])
        for _ in range(2):
            with pytest.raises(AlreadyInRoomError):
                await gateway.join_game(alice, "Alice")

        with pytest.raises(RateLimitedError) as exc_info:
            await gateway.join_game(alice, "Alice")
        assert exc_info.value.remaining == 0
        assert 0 < exc_info.value.reset_in_ms <= 60_000


class TestSendError:
    async def test_rate_limit_error_carries_budget(self, gateway, mock_connection):
        error = RateLimitedError("Too many requests. Please slow down.", remaining=0, reset_in_ms=1234)
        await gateway.send_error(mock_connection, error)

        assert mock_connection.sent_messages == [
            {
                "event": "error",
                "type": "rate_limit",
                "message": "Too many requests. Please slow down.",
                "remaining": 0,
                "resetInMs": 1234,
            },
        ]

    async def test_plain_error_omits_budget(self, gateway, mock_connection):
        await gateway.send_error(mock_connection, NotInRoomError("You must join a game first"))
        assert mock_connection.sent_messages == [
            {"event": "error", "type": "not_in_room", "message": "You must join a game first"},
        ]


class TestSubmitItem:
    async def test_requires_room(self, gateway, mock_connection):
        with pytest.raises(NotInRoomError):
            await gateway.submit_item(mock_connection, SubmitItemMessage(prediction="cup", confidence=0.9))

    async def test_scores_through_state_machine(self, gateway):
        room, (alice, bob) = await start_game(gateway)
        room.last_activity = 0.0

        result = await gateway.submit_item(alice, SubmitItemMessage(prediction="Cup", confidence=0.9))

        assert result.matched is True
        assert room.players[alice.connection_id].score == result.score
        assert room.last_activity > 0.0
        assert len(bob.events("itemVerified")) == 1

    async def test_submissions_are_rate_limited(self, gateway):
        room, (alice, bob, _) = await start_game(gateway, ["Alice", "Bob", "Carol"])
        message = SubmitItemMessage(prediction="banana", confidence=0.9)
        for _ in range(5):
            await gateway.submit_item(alice, message)

        with pytest.raises(RateLimitedError):
            await gateway.submit_item(alice, message)
        assert len(bob.events("itemVerified")) == 5


class TestPing:
    async def test_pong_and_touch(self, gateway):
        [alice] = await join_players(gateway, ["Alice"])
        room = gateway.registry.room_of(alice.connection_id)
        room.last_activity = 0.0

        await gateway.handle_ping(alice)

        assert alice.sent_messages[-1] == {"event": "pong"}
        assert room.last_activity > 0.0

    async def test_pong_outside_room(self, gateway, mock_connection):
        await gateway.handle_ping(mock_connection)
        assert mock_connection.sent_messages == [{"event": "pong"}]


class TestDisconnect:
    async def test_caches_progress_and_notifies_room(self, gateway):
        room, (alice, bob, carol) = await start_game(gateway, ["Alice", "Bob", "Carol"])
        await submit_at(gateway, room, carol, 0)

        await gateway.handle_disconnect(carol)

        assert carol.connection_id not in room.players
        assert alice.events("playerLeft") == [
            {"event": "playerLeft", "playerId": carol.connection_id, "remainingPlayers": 2},
        ]
        record = gateway.recovery_cache.take(carol.connection_id)
        assert record is not None
        assert record.room_id == room.room_id
        assert record.snapshot.score == 150
        assert (record.game_number, record.round_number) == (1, 1)

    async def test_clears_rate_windows(self, gateway):
        [alice] = await join_players(gateway, ["Alice"])
        assert gateway.rate_limiter.window_count == 1

        await gateway.handle_disconnect(alice)

        assert gateway.rate_limiter.window_count == 0
        assert gateway.connection_count == 0

    async def test_last_player_destroys_room(self, gateway):
        [alice] = await join_players(gateway, ["Alice"])
        room_id = gateway.registry.room_of(alice.connection_id).room_id

        await gateway.handle_disconnect(alice)

        assert gateway.registry.get(room_id) is None

    async def test_unseated_connection(self, gateway, mock_connection):
        gateway.register_connection(mock_connection)
        await gateway.handle_disconnect(mock_connection)
        assert len(gateway.recovery_cache) == 0


class TestAttemptRejoin:
    async def test_restores_seat_and_score(self, gateway):
        room, (alice, bob, carol) = await start_game(gateway, ["Alice", "Bob", "Carol"])
        await submit_at(gateway, room, carol, 0)
        await gateway.handle_disconnect(carol)
        alice._outbox.clear()

        returning = MockConnection()
        gateway.register_connection(returning)
        assert await gateway.attempt_rejoin(returning, carol.connection_id) is True

        player = room.players[returning.connection_id]
        assert (player.name, player.score, player.streak) == ("Carol", 150, 1)
        assert player.has_found
        assert gateway.registry.room_of(returning.connection_id) is room

        [result] = returning.events("rejoinResult")
        assert result["success"] is True
        state = result["gameState"]
        assert state["roomId"] == room.room_id
        assert state["state"] == "active"
        assert state["targetItem"] == "cup"
        assert [p["name"] for p in state["players"]] == ["Alice", "Bob", "Carol"]

        assert alice.events("playerRejoined") == [
            {"event": "playerRejoined", "playerId": returning.connection_id, "name": "Carol"},
        ]
        assert returning.events("playerRejoined") == []

    async def test_rejoin_after_round_ended(self, gateway):
        room, (alice, bob, carol) = await start_game(gateway, ["Alice", "Bob", "Carol"])
        await gateway.handle_disconnect(carol)
        await gateway.machine.end_round(room.room_id, RoundEndReason.TIMEOUT)

        returning = MockConnection()
        assert await gateway.attempt_rejoin(returning, carol.connection_id) is True

        player = room.players[returning.connection_id]
        assert player.round_scores == [0]
        assert room.state == RoomState.BETWEEN_ROUNDS

    async def test_unknown_id(self, gateway, mock_connection):
        assert await gateway.attempt_rejoin(mock_connection, "never-seen") is False
        assert mock_connection.sent_messages == [{"event": "rejoinResult", "success": False}]
        assert gateway.registry.room_of(mock_connection.connection_id) is None

    async def test_record_is_consumed_once(self, gateway):
        room, (alice, bob, carol) = await start_game(gateway, ["Alice", "Bob", "Carol"])
        await gateway.handle_disconnect(carol)

        first, second = MockConnection(), MockConnection()
        assert await gateway.attempt_rejoin(first, carol.connection_id) is True
        assert await gateway.attempt_rejoin(second, carol.connection_id) is False
        assert room.player_count == 3

    async def test_fails_once_game_is_over(self, gateway):
        room, (alice, bob) = await start_game(gateway)
        await gateway.handle_disconnect(bob)
        assert room.state == RoomState.WAITING

        returning = MockConnection()
        assert await gateway.attempt_rejoin(returning, bob.connection_id) is False
        assert returning.events("rejoinResult") == [{"event": "rejoinResult", "success": False}]
        assert room.player_names == ["Alice"]

    async def test_fails_after_expiry(self, settings, item_selector):
        gateway = SessionGateway(
            settings,
            item_selector=item_selector,
            recovery_cache=SessionRecoveryCache(ttl_seconds=0),
        )
        room, (alice, bob, carol) = await start_game(gateway, ["Alice", "Bob", "Carol"])
        await gateway.handle_disconnect(carol)

        assert await gateway.attempt_rejoin(MockConnection(), carol.connection_id) is False
        gateway.shutdown()

    async def test_rejected_while_seated(self, gateway):
        room, (alice, bob, carol) = await start_game(gateway, ["Alice", "Bob", "Carol"])
        await gateway.handle_disconnect(carol)

        with pytest.raises(AlreadyInRoomError):
            await gateway.attempt_rejoin(alice, carol.connection_id)


class TestMaintenance:
    async def test_reaps_idle_waiting_room(self, gateway):
        [alice] = await join_players(gateway, ["Alice"])
        room = gateway.registry.room_of(alice.connection_id)
        room.last_activity -= 700

        await gateway.run_maintenance()

        assert gateway.registry.get(room.room_id) is None
        assert alice.is_closed
        assert alice._close_reason == "room_inactive"
        assert alice.events("gameEnded") == []

    async def test_idle_game_between_rounds_ends_as_inactive(self, gateway):
        room, (alice, bob) = await start_game(gateway)
        await gateway.machine.end_round(room.room_id, RoundEndReason.TIMEOUT)
        room.last_activity -= 700

        await gateway.run_maintenance()

        [ended] = bob.events("gameEnded")
        assert ended["reason"] == "room_inactive"
        assert gateway.registry.get(room.room_id) is None
        assert bob.is_closed

    async def test_active_round_is_never_reaped(self, gateway):
        room, (alice, _) = await start_game(gateway)
        room.last_activity -= 700

        await gateway.run_maintenance()

        assert gateway.registry.get(room.room_id) is room
        assert not alice.is_closed

    async def test_sweeps_expired_recovery_records(self, settings, item_selector):
        gateway = SessionGateway(
            settings,
            item_selector=item_selector,
            recovery_cache=SessionRecoveryCache(ttl_seconds=0),
        )
        room, (alice, bob, carol) = await start_game(gateway, ["Alice", "Bob", "Carol"])
        await gateway.handle_disconnect(carol)
        assert len(gateway.recovery_cache) == 1

        await gateway.run_maintenance()

        assert len(gateway.recovery_cache) == 0
        gateway.shutdown()

    async def test_start_and_stop(self, gateway):
        gateway.start_maintenance()
        gateway.start_maintenance()
        await gateway.stop_maintenance()
        await gateway.stop_maintenance()


class TestStatus:
    async def test_counts_rooms_players_and_budgets(self, gateway):
        alice, bob = await join_players(gateway)

        status = gateway.status()

        assert status["active_rooms"] == 1
        assert status["total_players"] == 2
        assert status["connections"] == 2
        assert status["recovery_records"] == 0
        assert status["rate_limits"][alice.connection_id]["roomJoin"]["remaining"] == 2
