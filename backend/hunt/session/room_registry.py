"""Room lifecycle management: creation, lookup, join/leave, and idle reaping."""

from __future__ import annotations

import contextlib
import time
from collections.abc import Awaitable, Callable
from uuid import uuid4

import structlog

from hunt.logic.enums import RoomState
from hunt.logic.exceptions import AlreadyInRoomError, RoomFullError, RoomNotFoundError
from hunt.logic.settings import GameSettings
from hunt.session.models import Player, Room

logger = structlog.get_logger()

# Callback types. The gateway wires these to broadcasts and state machine signals.
JoinedCallback = Callable[[Room, Player], Awaitable[None]]
LeftCallback = Callable[[Room, str], Awaitable[None]]
ReapedCallback = Callable[[Room], Awaitable[None]]


class RoomRegistry:
    """Own every room in the process, keyed by room id.

    Rooms are kept in creation order so find_joinable() hands out the oldest
    room with space first. The registry never inspects round progress beyond
    the room state; membership changes are reported through callbacks.
    """

    def __init__(
        self,
        settings: GameSettings | None = None,
        *,
        on_joined: JoinedCallback | None = None,
        on_left: LeftCallback | None = None,
        on_reaped: ReapedCallback | None = None,
    ) -> None:
        self._settings = settings or GameSettings()
        self._on_joined = on_joined
        self._on_left = on_left
        self._on_reaped = on_reaped
        self._rooms: dict[str, Room] = {}
        self._player_rooms: dict[str, str] = {}  # connection_id -> room_id

    # --- Queries ---

    def get(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def room_of(self, player_id: str) -> Room | None:
        room_id = self._player_rooms.get(player_id)
        return self._rooms.get(room_id) if room_id is not None else None

    def rooms(self) -> list[Room]:
        return list(self._rooms.values())

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    @property
    def player_count(self) -> int:
        return len(self._player_rooms)

    def find_joinable(self) -> str | None:
        """Return the oldest room that is not mid-round and has a free slot."""
        for room in self._rooms.values():
            if room.state != RoomState.ACTIVE and not room.is_full:
                return room.room_id
        return None

    # --- Mutations ---

    def create(self) -> str:
        """Allocate a new empty room in the Waiting state."""
        room_id = f"room_{uuid4().hex[:12]}"
        self._rooms[room_id] = Room(room_id=room_id, settings=self._settings, last_activity=time.monotonic())
        logger.info("room created", room_id=room_id)
        return room_id

    async def join(self, room_id: str, player: Player) -> Room:
        """Add a player to a room and signal the join.

        Joining a Waiting, Countdown, BetweenRounds or Ended room is allowed;
        only capacity and unknown rooms are errors.
        """
        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFoundError("Room does not exist")
        if player.player_id in self._player_rooms:
            raise AlreadyInRoomError("You are already in a room")
        if room.is_full:
            raise RoomFullError("Room is full. Please try again later.")

        room.players[player.player_id] = player
        self._player_rooms[player.player_id] = room_id
        room.last_activity = time.monotonic()
        logger.info("player joined room", room_id=room_id, player_count=room.player_count)

        if self._on_joined is not None:
            await self._on_joined(room, player)
        return room

    async def leave(self, room_id: str, player_id: str) -> int:
        """Remove a player; destroy the room once empty. Returns the remaining player count."""
        room = self._rooms.get(room_id)
        if room is None:
            # Room already destroyed (emptied or reaped) between dispatch and handling.
            self._player_rooms.pop(player_id, None)
            logger.info("leave for unknown room ignored", room_id=room_id)
            return 0

        if room.players.pop(player_id, None) is None:
            return room.player_count
        self._player_rooms.pop(player_id, None)

        if room.is_empty:
            self.destroy(room_id)
            return 0

        if self._on_left is not None:
            await self._on_left(room, player_id)
        return room.player_count

    def replace_player(self, room: Room, prior_id: str, player: Player) -> None:
        """Swap a stale entry for a recovered player in place, or append if already gone."""
        if player.player_id in self._player_rooms:
            raise AlreadyInRoomError("You are already in a room")

        if prior_id in room.players:
            room.players = {
                (player.player_id if cid == prior_id else cid): (player if cid == prior_id else existing)
                for cid, existing in room.players.items()
            }
            self._player_rooms.pop(prior_id, None)
        else:
            room.players[player.player_id] = player
        self._player_rooms[player.player_id] = room.room_id
        room.last_activity = time.monotonic()

    def touch(self, room: Room) -> None:
        room.last_activity = time.monotonic()

    def destroy(self, room_id: str) -> Room | None:
        """Remove a room and cancel its armed timer."""
        room = self._rooms.pop(room_id, None)
        if room is None:
            return None
        room.pending_timer.cancel()
        for player_id in room.players:
            self._player_rooms.pop(player_id, None)
        logger.info("room destroyed", room_id=room_id)
        return room

    async def reap_inactive(self, max_idle_seconds: float) -> list[str]:
        """Destroy every non-Active room idle for longer than max_idle_seconds.

        Best-effort: scans a snapshot of the current rooms, so a room created
        or joined mid-scan may be skipped until the next pass. Players still in
        a reaped room have their connections closed.
        """
        now = time.monotonic()
        expired = [
            room
            for room in list(self._rooms.values())
            if room.state != RoomState.ACTIVE and now - room.last_activity > max_idle_seconds
        ]
        reaped: list[str] = []
        for room in expired:
            # Re-check: the room may have been destroyed or revived while we awaited an earlier one.
            if self._rooms.get(room.room_id) is not room or room.state == RoomState.ACTIVE:
                continue
            logger.info("room inactive, reaping", room_id=room.room_id, idle_seconds=round(now - room.last_activity))
            if self._on_reaped is not None:
                await self._on_reaped(room)
            players = list(room.players.values())
            self.destroy(room.room_id)
            reaped.append(room.room_id)
            for player in players:
                with contextlib.suppress(RuntimeError, OSError, ConnectionError):
                    await player.connection.close(code=1000, reason="room_inactive")
        return reaped
