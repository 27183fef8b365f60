from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING
from unittest.mock import patch

from hunt.logic.enums import RoomState
from hunt.logic.items import Claim
from hunt.tests.mocks import MockConnection

if TYPE_CHECKING:
    from collections.abc import Sequence

    from hunt.session.gateway import SessionGateway
    from hunt.session.models import Room
    from hunt.session.round_machine import ScoreResult

ROUND_START = 1000.0


async def join_players(
    gateway: SessionGateway,
    names: Sequence[str] = ("Alice", "Bob"),
    connections: Sequence[MockConnection] | None = None,
) -> list[MockConnection]:
    """Register and seat one connection per name through the gateway."""
    if connections is None:
        connections = [MockConnection() for _ in names]
    for conn, name in zip(connections, names, strict=True):
        gateway.register_connection(conn)
        await gateway.join_game(conn, name)
    return list(connections)


async def start_game(
    gateway: SessionGateway,
    names: Sequence[str] = ("Alice", "Bob"),
    connections: Sequence[MockConnection] | None = None,
) -> tuple[Room, list[MockConnection]]:
    """Seat players, skip the countdown, and return the room in round 1 with clean outboxes."""
    conns = await join_players(gateway, names, connections)
    room = gateway.registry.room_of(conns[0].connection_id)
    assert room is not None
    assert room.state == RoomState.COUNTDOWN

    await gateway.machine._start_game(room.room_id)
    assert room.state == RoomState.ACTIVE

    for conn in conns:
        conn._outbox.clear()
    return room, conns


def claim(label: str = "cup", confidence: float = 0.9) -> Claim:
    return Claim(candidate_label=label, confidence=confidence)


async def submit_at(
    gateway: SessionGateway,
    room: Room,
    conn: MockConnection,
    elapsed_seconds: float,
    label: str = "cup",
) -> ScoreResult:
    """Submit with the round clock frozen at elapsed_seconds into the round."""
    room.round_started_at = ROUND_START
    with patch("hunt.session.round_machine.time") as mock_time:
        mock_time.monotonic.return_value = ROUND_START + elapsed_seconds
        return await gateway.machine.submit(room.room_id, conn.connection_id, claim(label))


async def wait_for_state(room: Room, state: RoomState, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while room.state != state:
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)
