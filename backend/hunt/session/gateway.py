"""
Connection-facing coordinator for rooms, rounds, throttling and recovery.

Owns one RoomRegistry, one RoundStateMachine, the rate limiter and the
recovery cache, and is the only place that turns domain errors into error
events. Registry membership callbacks are wired here: a join is announced
before the state machine reacts to it, while a departure is handed straight
to the state machine, which settles the room before announcing anything.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any

import structlog

from hunt.logic.enums import ActionType, EndReason
from hunt.logic.exceptions import AlreadyInRoomError, NotInRoomError, RateLimitedError
from hunt.logic.items import Claim
from hunt.messaging.types import (
    ErrorMessage,
    PlayerJoinedMessage,
    PlayerRejoinedMessage,
    PongMessage,
    RejoinResultMessage,
)
from hunt.server.rate_limit import SlidingWindowRateLimiter
from hunt.session.broadcast import broadcast_to_players
from hunt.session.models import Player
from hunt.session.recovery_cache import SessionRecoveryCache
from hunt.session.room_registry import RoomRegistry
from hunt.session.round_machine import RoundStateMachine, player_summaries

if TYPE_CHECKING:
    from hunt.logic.exceptions import HuntError
    from hunt.logic.items import ClaimMatcher, ItemSelector
    from hunt.logic.settings import GameSettings
    from hunt.messaging.protocol import ConnectionProtocol
    from hunt.messaging.types import SubmitItemMessage
    from hunt.session.models import Room
    from hunt.session.round_machine import ScoreResult

logger = structlog.get_logger()

DEFAULT_ROOM_MAX_IDLE_SECONDS = 600.0
DEFAULT_MAINTENANCE_INTERVAL_SECONDS = 30.0


class SessionGateway:
    def __init__(
        self,
        settings: GameSettings | None = None,
        *,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        recovery_cache: SessionRecoveryCache | None = None,
        item_selector: ItemSelector | None = None,
        claim_matcher: ClaimMatcher | None = None,
        room_max_idle_seconds: float = DEFAULT_ROOM_MAX_IDLE_SECONDS,
        maintenance_interval_seconds: float = DEFAULT_MAINTENANCE_INTERVAL_SECONDS,
    ) -> None:
        self._connections: dict[str, ConnectionProtocol] = {}
        self._registry = RoomRegistry(
            settings,
            on_joined=self._on_player_joined,
            on_left=self._on_player_left,
            on_reaped=self._on_room_reaped,
        )
        self._machine = RoundStateMachine(
            self._registry,
            item_selector=item_selector,
            claim_matcher=claim_matcher,
        )
        self._rate_limiter = rate_limiter if rate_limiter is not None else SlidingWindowRateLimiter()
        self._recovery_cache = recovery_cache if recovery_cache is not None else SessionRecoveryCache()
        self._room_max_idle_seconds = room_max_idle_seconds
        self._maintenance_interval_seconds = maintenance_interval_seconds
        self._maintenance_task: asyncio.Task[None] | None = None

    @property
    def registry(self) -> RoomRegistry:
        return self._registry

    @property
    def machine(self) -> RoundStateMachine:
        return self._machine

    @property
    def rate_limiter(self) -> SlidingWindowRateLimiter:
        return self._rate_limiter

    @property
    def recovery_cache(self) -> SessionRecoveryCache:
        return self._recovery_cache

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def register_connection(self, connection: ConnectionProtocol) -> None:
        self._connections[connection.connection_id] = connection

    def unregister_connection(self, connection: ConnectionProtocol) -> None:
        self._connections.pop(connection.connection_id, None)

    # --- Throttling and errors ---

    def check_rate(self, action_type: ActionType, subject_id: str) -> None:
        """Record one action for the subject, raising RateLimitedError once the window is exhausted."""
        if self._rate_limiter.allow(action_type, subject_id):
            return
        remaining = self._rate_limiter.remaining(action_type, subject_id)
        raise RateLimitedError(
            "Too many requests. Please slow down.",
            remaining=remaining.count,
            reset_in_ms=remaining.reset_in_ms,
        )

    async def send_error(self, connection: ConnectionProtocol, error: HuntError) -> None:
        logger.warning("session error sent to client", error_code=error.code.value, error_message=error.message)
        remaining = reset_in_ms = None
        if isinstance(error, RateLimitedError):
            remaining, reset_in_ms = error.remaining, error.reset_in_ms
        message = ErrorMessage(type=error.code, message=error.message, remaining=remaining, reset_in_ms=reset_in_ms)
        await connection.send_message(message.to_wire())

    # --- Inbound events ---

    async def join_game(self, connection: ConnectionProtocol, name: str) -> Room:
        """Seat the connection in the oldest room with space, creating one when none is free."""
        self.check_rate(ActionType.ROOM_JOIN, connection.connection_id)
        if self._registry.room_of(connection.connection_id) is not None:
            raise AlreadyInRoomError("You are already in a room")

        room_id = self._registry.find_joinable() or self._registry.create()
        structlog.contextvars.bind_contextvars(room_id=room_id)
        return await self._registry.join(room_id, Player(connection=connection, name=name))

    async def attempt_rejoin(self, connection: ConnectionProtocol, prior_id: str) -> bool:
        """Resume a disconnected player's seat under this connection's id.

        Answers with rejoinResult either way. The recovery record is consumed
        even when the rejoin fails, so a stale id can never be replayed.
        """
        self.check_rate(ActionType.ROOM_JOIN, connection.connection_id)
        if self._registry.room_of(connection.connection_id) is not None:
            raise AlreadyInRoomError("You are already in a room")

        record = self._recovery_cache.take(prior_id)
        room = self._registry.get(record.room_id) if record is not None else None
        if (
            record is None
            or room is None
            or not room.in_game
            or room.game_number != record.game_number
            or (prior_id not in room.players and room.is_full)
        ):
            logger.info("rejoin rejected", prior_id=prior_id)
            await connection.send_message(RejoinResultMessage(success=False).to_wire())
            return False

        structlog.contextvars.bind_contextvars(room_id=room.room_id)
        player = Player.restore(connection, record.snapshot)
        self._machine.resume_player(room, player, record.round_number)
        self._registry.replace_player(room, prior_id, player)
        logger.info("player rejoined", prior_id=prior_id, round=room.current_round)

        await connection.send_message(
            RejoinResultMessage(success=True, game_state=self._machine.game_state(room)).to_wire(),
        )
        await broadcast_to_players(
            room.players,
            PlayerRejoinedMessage(player_id=player.player_id, name=player.name).to_wire(),
            exclude_connection_id=player.player_id,
        )
        return True

    async def submit_item(self, connection: ConnectionProtocol, message: SubmitItemMessage) -> ScoreResult:
        self.check_rate(ActionType.ITEM_SUBMISSION, connection.connection_id)
        room = self._registry.room_of(connection.connection_id)
        if room is None:
            raise NotInRoomError("You must join a game first")

        structlog.contextvars.bind_contextvars(room_id=room.room_id)
        self._registry.touch(room)
        claim = Claim(candidate_label=message.prediction, confidence=message.confidence)
        return await self._machine.submit(room.room_id, connection.connection_id, claim)

    async def handle_ping(self, connection: ConnectionProtocol) -> None:
        room = self._registry.room_of(connection.connection_id)
        if room is not None:
            self._registry.touch(room)
        await connection.send_message(PongMessage().to_wire())

    async def handle_disconnect(self, connection: ConnectionProtocol) -> None:
        """Snapshot the player's progress for recovery, then remove them from their room."""
        connection_id = connection.connection_id
        self.unregister_connection(connection)
        self._rate_limiter.clear(connection_id)

        room = self._registry.room_of(connection_id)
        if room is None:
            return
        player = room.players.get(connection_id)
        if player is not None:
            self._recovery_cache.put(
                connection_id,
                room.room_id,
                player.snapshot(),
                game_number=room.game_number,
                round_number=room.current_round,
            )
        logger.info("player disconnected", room_id=room.room_id)
        await self._registry.leave(room.room_id, connection_id)

    # --- Registry callbacks ---

    async def _on_player_joined(self, room: Room, player: Player) -> None:
        self._machine.seat_player(room, player)
        await broadcast_to_players(
            room.players,
            PlayerJoinedMessage(
                player_id=player.player_id,
                name=player.name,
                current_players=player_summaries(room),
            ).to_wire(),
        )
        await self._machine.player_joined(room.room_id)

    async def _on_player_left(self, room: Room, player_id: str) -> None:
        await self._machine.player_left(room.room_id, player_id)

    async def _on_room_reaped(self, room: Room) -> None:
        await self._machine.end_game(room.room_id, EndReason.ROOM_INACTIVE)

    # --- Maintenance ---

    def start_maintenance(self) -> None:
        """Start the periodic reaping and cleanup task. Idempotent."""
        if self._maintenance_task is not None and not self._maintenance_task.done():
            return
        self._maintenance_task = asyncio.create_task(self._maintenance_loop())

    async def stop_maintenance(self) -> None:
        if self._maintenance_task is not None:
            self._maintenance_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._maintenance_task
            self._maintenance_task = None

    async def _maintenance_loop(self) -> None:
        while True:
            await asyncio.sleep(self._maintenance_interval_seconds)
            try:
                await self.run_maintenance()
            except Exception:
                logger.exception("maintenance pass encountered an error")

    async def run_maintenance(self) -> None:
        """One pass of idle-room reaping, rate window pruning and recovery sweeping."""
        reaped = await self._registry.reap_inactive(self._room_max_idle_seconds)
        dropped_windows = self._rate_limiter.cleanup()
        expired_records = self._recovery_cache.cleanup()
        if reaped or dropped_windows or expired_records:
            logger.info(
                "maintenance pass",
                reaped_rooms=len(reaped),
                dropped_windows=dropped_windows,
                expired_records=expired_records,
            )

    def shutdown(self) -> None:
        """Cancel every armed room timer."""
        for room in self._registry.rooms():
            room.pending_timer.cancel()

    # --- Status ---

    def status(self) -> dict[str, Any]:
        return {
            "active_rooms": self._registry.room_count,
            "total_players": self._registry.player_count,
            "connections": self.connection_count,
            "recovery_records": len(self._recovery_cache),
            "rate_limits": {
                subject: {
                    action: {"remaining": remaining.count, "reset_in_ms": remaining.reset_in_ms}
                    for action, remaining in actions.items()
                }
                for subject, actions in self._rate_limiter.snapshot().items()
            },
        }
