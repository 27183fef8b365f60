"""Fan-out of outbound events to the members of a room."""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from hunt.session.models import Player


async def broadcast_to_players(
    players: dict[str, Player],
    message: dict[str, Any],
    exclude_connection_id: str | None = None,
) -> None:
    """Send a message to every player in the map, optionally skipping one connection.

    Iterates over a snapshot so a disconnect handled while we await a send
    cannot mutate the dict underneath us. A dead socket never aborts the
    broadcast for the rest of the room.
    """
    for player in list(players.values()):
        if player.player_id != exclude_connection_id:
            with contextlib.suppress(RuntimeError, OSError, ConnectionError):
                await player.connection.send_message(message)
