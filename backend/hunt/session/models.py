from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from hunt.logic.enums import RoomState
from hunt.logic.settings import GameSettings
from hunt.logic.timer import RoomTimer

if TYPE_CHECKING:
    from hunt.logic.items import RoundTarget
    from hunt.messaging.protocol import ConnectionProtocol


@dataclass
class Player:
    """Represent a connected player inside exactly one room.

    Lifecycle:
    - Created on joinGame with a fresh connection id as player_id
    - score/streak/round_scores change only inside RoundStateMachine
    - On disconnect: snapshotted into the recovery cache, then removed
    - On rejoin: restored from the snapshot under the new connection id
    """

    connection: ConnectionProtocol
    name: str
    score: int = 0
    streak: int = 0
    best_streak: int = 0
    round_scores: list[int] = field(default_factory=list)
    # Per-round bookkeeping, reset when a round starts.
    round_score: int = 0
    found_at: float | None = None  # time.monotonic() of the matching submission

    @property
    def player_id(self) -> str:
        return self.connection.connection_id

    @property
    def has_found(self) -> bool:
        return self.found_at is not None

    def reset_round(self) -> None:
        self.round_score = 0
        self.found_at = None

    def reset_game(self) -> None:
        self.score = 0
        self.streak = 0
        self.best_streak = 0
        self.round_scores = []
        self.reset_round()

    def snapshot(self) -> PlayerSnapshot:
        return PlayerSnapshot(
            name=self.name,
            score=self.score,
            streak=self.streak,
            best_streak=self.best_streak,
            round_scores=tuple(self.round_scores),
            round_score=self.round_score,
            found_at=self.found_at,
        )

    @classmethod
    def restore(cls, connection: ConnectionProtocol, snapshot: PlayerSnapshot) -> Player:
        return cls(
            connection=connection,
            name=snapshot.name,
            score=snapshot.score,
            streak=snapshot.streak,
            best_streak=snapshot.best_streak,
            round_scores=list(snapshot.round_scores),
            round_score=snapshot.round_score,
            found_at=snapshot.found_at,
        )


@dataclass(frozen=True)
class PlayerSnapshot:
    """Connection-free copy of a player's progress."""

    name: str
    score: int
    streak: int
    best_streak: int
    round_scores: tuple[int, ...]
    round_score: int = 0
    found_at: float | None = None


@dataclass(frozen=True)
class SessionRecoveryRecord:
    """A disconnected player's progress, kept for a short grace window."""

    prior_id: str
    room_id: str
    snapshot: PlayerSnapshot
    expires_at: float  # time.monotonic() deadline
    game_number: int = 0
    round_number: int = 0  # round in progress when the player dropped


@dataclass
class Room:
    """A shared hunt room that runs the round state machine.

    players is keyed by connection id; dict insertion order is join order.
    pending_timer is the single armed transition for this room.
    """

    room_id: str
    settings: GameSettings = field(default_factory=GameSettings)
    state: RoomState = RoomState.WAITING
    current_round: int = 0
    game_number: int = 0  # incremented each time a game starts
    round_target: RoundTarget | None = None
    round_started_at: float | None = None
    last_activity: float = 0.0
    players: dict[str, Player] = field(default_factory=dict)  # connection_id -> Player
    pending_timer: RoomTimer = field(default_factory=RoomTimer)

    @property
    def player_count(self) -> int:
        return len(self.players)

    @property
    def is_empty(self) -> bool:
        return self.player_count == 0

    @property
    def is_full(self) -> bool:
        return self.player_count >= self.settings.max_players

    @property
    def in_game(self) -> bool:
        """A game is underway: a round is running or the next one is pending."""
        return self.state in (RoomState.ACTIVE, RoomState.BETWEEN_ROUNDS)

    @property
    def has_quorum(self) -> bool:
        return self.player_count >= self.settings.min_players

    @property
    def player_names(self) -> list[str]:
        return [p.name for p in self.players.values()]
