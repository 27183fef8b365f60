"""
Per-room round lifecycle: countdown, rounds, submissions, and game end.

Waiting -> Countdown -> Active(1) -> BetweenRounds -> Active(2) ... -> Ended -> Waiting

Every scheduled transition goes through the room's single RoomTimer, and
every callback re-validates the room before acting: a timer that fires for a
destroyed room, or for a round that has already been ended early, is a no-op.
State is mutated (and the next timer armed) before any broadcast is awaited,
so events handled while a send is in flight always see a consistent room.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from hunt.logic.enums import EndReason, RoomState, RoundEndReason
from hunt.logic.exceptions import (
    AlreadyFoundError,
    InvalidSubmissionError,
    NotActiveError,
    RoomNotFoundError,
    SubmissionInFlightError,
    UnknownPlayerError,
)
from hunt.logic.items import ItemCatalog, KeywordClaimMatcher
from hunt.logic.scoring import score, time_bonus
from hunt.messaging.types import (
    CountdownMessage,
    FinalResult,
    GameEndedMessage,
    GameStartedMessage,
    GameStartingMessage,
    GameStateSnapshot,
    ItemVerifiedMessage,
    PlayerLeftMessage,
    PlayerSummary,
    RoundEndedMessage,
    RoundResult,
    RoundStartedMessage,
)
from hunt.session.broadcast import broadcast_to_players

if TYPE_CHECKING:
    from hunt.logic.items import Claim, ClaimMatcher, ItemSelector, RoundTarget
    from hunt.messaging.types import WireModel
    from hunt.session.models import Player, Room
    from hunt.session.room_registry import RoomRegistry

logger = structlog.get_logger()


@dataclass(frozen=True)
class ScoreResult:
    """Outcome of one scored submission."""

    player_id: str
    matched: bool
    score: int
    total_score: int
    streak: int
    time_bonus: int


def player_summaries(room: Room) -> list[PlayerSummary]:
    return [PlayerSummary(id=p.player_id, name=p.name, score=p.score, streak=p.streak) for p in room.players.values()]


class RoundStateMachine:
    """Drive the round lifecycle of every room in a RoomRegistry.

    Rooms are addressed by id and resolved through the registry on every
    call, so a room destroyed between dispatch and handling is simply skipped.
    Item choice and claim matching are delegated to injected collaborators.
    """

    def __init__(
        self,
        registry: RoomRegistry,
        *,
        item_selector: ItemSelector | None = None,
        claim_matcher: ClaimMatcher | None = None,
    ) -> None:
        self._registry = registry
        self._item_selector = item_selector or ItemCatalog()
        self._claim_matcher = claim_matcher or KeywordClaimMatcher()
        self._in_flight: set[tuple[str, str]] = set()  # (room_id, player_id) being scored

    # --- Membership signals ---

    def seat_player(self, room: Room, player: Player) -> None:
        """Give a newcomer a zero for every round of the current game that already ended."""
        while len(player.round_scores) < self._completed_rounds(room):
            player.round_scores.append(0)

    async def player_joined(self, room_id: str) -> None:
        """Start the countdown once a waiting room reaches the minimum player count."""
        room = self._resolve(room_id)
        if room is not None and room.state == RoomState.WAITING and room.has_quorum:
            await self.request_start(room_id)

    async def player_left(self, room_id: str, player_id: str) -> None:
        """Announce a departure, then react to it.

        An underfilled game is force-ended, an underfilled countdown goes back
        to Waiting, and an active round the remaining players have all
        finished is closed. Every transition happens before playerLeft is
        sent, so a send cut short never strands the room mid-game.
        """
        room = self._resolve(room_id)
        if room is None:
            return

        outbound: list[WireModel] = [PlayerLeftMessage(player_id=player_id, remaining_players=room.player_count)]
        if room.in_game and not room.has_quorum:
            outbound.append(self._close_game(room, EndReason.INSUFFICIENT_PLAYERS))
        elif room.state == RoomState.COUNTDOWN and not room.has_quorum:
            room.pending_timer.cancel()
            room.state = RoomState.WAITING
            logger.info("countdown aborted, not enough players", room_id=room_id)
        elif room.state == RoomState.ACTIVE and self._everyone_found(room):
            outbound.append(self._close_round(room, RoundEndReason.ALL_FOUND))

        for message in outbound:
            await self._broadcast(room, message)

    # --- Countdown ---

    async def request_start(self, room_id: str) -> None:
        """Arm the pre-game countdown. Idempotent while a countdown or game is already running."""
        room = self._resolve(room_id)
        if room is None or room.state not in (RoomState.WAITING, RoomState.ENDED):
            return

        remaining = room.settings.countdown_seconds
        room.state = RoomState.COUNTDOWN
        self._arm_countdown_tick(room, remaining)
        logger.info("countdown started", room_id=room_id, countdown=remaining)
        await self._broadcast(room, GameStartingMessage(countdown=remaining))

    def _arm_countdown_tick(self, room: Room, remaining: int) -> None:
        room_id = room.room_id
        if remaining <= 0:
            room.pending_timer.arm(0, lambda: self._start_game(room_id), "countdown")
            return
        room.pending_timer.arm(
            room.settings.countdown_tick_seconds,
            lambda: self._on_countdown_tick(room_id, remaining - 1),
            "countdown",
        )

    async def _on_countdown_tick(self, room_id: str, remaining: int) -> None:
        room = self._resolve(room_id)
        if room is None or room.state != RoomState.COUNTDOWN:
            return
        if remaining > 0:
            self._arm_countdown_tick(room, remaining)
            await self._broadcast(room, CountdownMessage(countdown=remaining))
            return
        await self._broadcast(room, CountdownMessage(countdown=0))
        await self._start_game(room_id)

    async def _start_game(self, room_id: str) -> None:
        room = self._resolve(room_id)
        if room is None or room.state != RoomState.COUNTDOWN:
            return
        if not room.has_quorum:
            room.state = RoomState.WAITING
            logger.info("game start skipped, not enough players", room_id=room_id)
            return

        for player in room.players.values():
            player.reset_game()
        room.game_number += 1
        room.current_round = 1
        self._begin_round(room)
        logger.info("game started", room_id=room_id, player_count=room.player_count)

        await self._broadcast(room, GameStartedMessage(round=room.current_round, players=player_summaries(room)))
        await self._broadcast_round_started(room)

    # --- Rounds ---

    def _begin_round(self, room: Room) -> None:
        """Enter Active for room.current_round and arm its deadline."""
        difficulty = room.settings.difficulty_for_round(room.current_round)
        room.round_target = self._item_selector.select(difficulty)
        for player in room.players.values():
            player.reset_round()
        room.round_started_at = time.monotonic()
        room.state = RoomState.ACTIVE

        room_id = room.room_id
        round_number = room.current_round
        room.pending_timer.arm(
            room.settings.round_duration_seconds,
            lambda: self._on_round_deadline(room_id, round_number),
            "round_deadline",
        )
        logger.info("round started", room_id=room_id, round=round_number, difficulty=difficulty)

    async def _broadcast_round_started(self, room: Room) -> None:
        if room.round_target is None:
            return
        await self._broadcast(
            room,
            RoundStartedMessage(
                round=room.current_round,
                target_item=room.round_target.name,
                duration=room.settings.round_duration_ms,
            ),
        )

    async def _on_round_deadline(self, room_id: str, round_number: int) -> None:
        room = self._resolve(room_id)
        if room is None or room.state != RoomState.ACTIVE or room.current_round != round_number:
            return
        await self.end_round(room_id, RoundEndReason.TIMEOUT)

    async def submit(self, room_id: str, player_id: str, claim: Claim) -> ScoreResult:
        """Score a player's claim against the current round target.

        At most one submission per (room, player) is processed at a time; a
        second one arriving before the first completes is rejected, never
        queued. Every scored claim is broadcast to the room as itemVerified;
        a miss scores nothing and breaks the player's streak.
        """
        room = self._registry.get(room_id)
        if room is None:
            raise RoomNotFoundError("Room does not exist")
        if room.state != RoomState.ACTIVE or room.round_target is None or room.round_started_at is None:
            raise NotActiveError("No round is in progress")
        player = room.players.get(player_id)
        if player is None:
            raise UnknownPlayerError("You are not in this room")

        key = (room_id, player_id)
        if key in self._in_flight:
            raise SubmissionInFlightError("Please wait before submitting again.")
        self._in_flight.add(key)
        try:
            return await self._score_submission(room, player, claim, room.round_target, room.round_started_at)
        finally:
            self._in_flight.discard(key)

    async def _score_submission(
        self,
        room: Room,
        player: Player,
        claim: Claim,
        target: RoundTarget,
        started_at: float,
    ) -> ScoreResult:
        if player.has_found:
            raise AlreadyFoundError("You already found this round's item")
        if claim.confidence < room.settings.confidence_floor:
            raise InvalidSubmissionError("Detection confidence too low")

        round_number = room.current_round
        if self._claim_matcher.matches(target, claim):
            now = time.monotonic()
            elapsed_ms = (now - started_at) * 1000
            duration_ms = room.settings.round_duration_ms
            points = score(elapsed_ms, duration_ms, round_number, player.streak)
            bonus = time_bonus(elapsed_ms, duration_ms)
            player.score += points
            player.streak += 1
            player.best_streak = max(player.best_streak, player.streak)
            player.round_score = points
            player.found_at = now
            logger.info("item found", room_id=room.room_id, round=round_number, points=points, streak=player.streak)
        else:
            points = 0
            bonus = 0
            player.streak = 0

        result = ScoreResult(
            player_id=player.player_id,
            matched=player.has_found,
            score=points,
            total_score=player.score,
            streak=player.streak,
            time_bonus=bonus,
        )
        round_ended = None
        if result.matched and self._everyone_found(room):
            round_ended = self._close_round(room, RoundEndReason.ALL_FOUND)

        await self._broadcast(
            room,
            ItemVerifiedMessage(
                player_id=result.player_id,
                name=player.name,
                matched=result.matched,
                score=result.score,
                total_score=result.total_score,
                streak=result.streak,
                time_bonus=result.time_bonus,
            ),
        )

        if round_ended is not None:
            await self._broadcast(room, round_ended)
        return result

    async def end_round(self, room_id: str, reason: RoundEndReason) -> None:
        """Close the active round: record round scores, rank, and schedule what comes next."""
        room = self._resolve(room_id)
        if room is None or room.state != RoomState.ACTIVE:
            return
        await self._broadcast(room, self._close_round(room, reason))

    def _close_round(self, room: Room, reason: RoundEndReason) -> RoundEndedMessage:
        """Move an Active room to BetweenRounds and return the roundEnded event to send."""
        room_id = room.room_id
        room.pending_timer.cancel()
        for player in room.players.values():
            player.round_scores.append(player.round_score)
            if not player.has_found:
                player.streak = 0
        results = self._rank_round(room)

        round_number = room.current_round
        room.state = RoomState.BETWEEN_ROUNDS
        room.round_target = None
        room.round_started_at = None
        room.pending_timer.arm(
            room.settings.inter_round_delay_seconds,
            lambda: self._on_inter_round_elapsed(room_id, round_number),
            "inter_round",
        )
        logger.info("round ended", room_id=room_id, round=round_number, reason=reason)
        return RoundEndedMessage(round=round_number, reason=reason, results=results)

    async def _on_inter_round_elapsed(self, room_id: str, round_number: int) -> None:
        room = self._resolve(room_id)
        if room is None or room.state != RoomState.BETWEEN_ROUNDS or room.current_round != round_number:
            return
        if round_number >= room.settings.rounds_per_game:
            await self.end_game(room_id, EndReason.COMPLETED)
            return
        room.current_round = round_number + 1
        self._begin_round(room)
        await self._broadcast_round_started(room)

    # --- Game end ---

    async def end_game(self, room_id: str, reason: EndReason) -> None:
        """Publish final rankings and reset the room for a new game without destroying it."""
        room = self._resolve(room_id)
        if room is None or not room.in_game:
            return
        await self._broadcast(room, self._close_game(room, reason))

    def _close_game(self, room: Room, reason: EndReason) -> GameEndedMessage:
        """Rank the game, reset the room to Waiting, and return the gameEnded event."""
        room.pending_timer.cancel()
        results = self._rank_game(room)
        room.current_round = 0
        room.round_target = None
        room.round_started_at = None
        for player in room.players.values():
            player.reset_game()
        room.state = RoomState.WAITING
        logger.info("game ended", room_id=room.room_id, reason=reason)
        return GameEndedMessage(reason=reason, results=results)

    # --- Snapshots ---

    def game_state(self, room: Room) -> GameStateSnapshot:
        """Current room state for a player resuming mid-game."""
        time_remaining = 0
        if room.state == RoomState.ACTIVE and room.round_started_at is not None:
            elapsed_ms = (time.monotonic() - room.round_started_at) * 1000
            time_remaining = max(0, math.floor(room.settings.round_duration_ms - elapsed_ms))
        return GameStateSnapshot(
            room_id=room.room_id,
            state=room.state,
            round=room.current_round,
            target_item=room.round_target.name if room.round_target is not None else None,
            time_remaining=time_remaining,
            players=player_summaries(room),
        )

    def resume_player(self, room: Room, player: Player, dropped_in_round: int) -> None:
        """Align a recovered player's round bookkeeping with rounds that ended while they were away.

        The round the player dropped in keeps whatever they scored before
        leaving; any later round they missed counts as a zero. Streaks break
        exactly as they would have for a player who stayed and found nothing.
        Per-round state only survives a return to the same active round.
        """
        while len(player.round_scores) < self._completed_rounds(room):
            missed_round = len(player.round_scores) + 1
            if missed_round == dropped_in_round:
                player.round_scores.append(player.round_score)
                if not player.has_found:
                    player.streak = 0
            else:
                player.round_scores.append(0)
                player.streak = 0
        if dropped_in_round != room.current_round or room.state != RoomState.ACTIVE:
            player.reset_round()

    def is_in_flight(self, room_id: str, player_id: str) -> bool:
        return (room_id, player_id) in self._in_flight

    # --- Internal helpers ---

    def _resolve(self, room_id: str) -> Room | None:
        room = self._registry.get(room_id)
        if room is None:
            logger.info("room no longer exists, ignoring transition", room_id=room_id)
        return room

    @staticmethod
    def _completed_rounds(room: Room) -> int:
        if not room.in_game:
            return 0
        return room.current_round if room.state == RoomState.BETWEEN_ROUNDS else room.current_round - 1

    @staticmethod
    def _everyone_found(room: Room) -> bool:
        return not room.is_empty and all(p.has_found for p in room.players.values())

    @staticmethod
    def _rank_round(room: Room) -> list[RoundResult]:
        """Rank by round score, earlier finds first on ties, then join order."""
        ordered = sorted(
            enumerate(room.players.values()),
            key=lambda item: (
                -item[1].round_score,
                item[1].found_at if item[1].found_at is not None else math.inf,
                item[0],
            ),
        )
        return [
            RoundResult(
                rank=rank,
                id=player.player_id,
                name=player.name,
                round_score=player.round_score,
                total_score=player.score,
                streak=player.streak,
                found=player.has_found,
            )
            for rank, (_, player) in enumerate(ordered, start=1)
        ]

    @staticmethod
    def _rank_game(room: Room) -> list[FinalResult]:
        # sorted() is stable, so equal totals keep join order
        ordered = sorted(room.players.values(), key=lambda p: -p.score)
        return [
            FinalResult(
                rank=rank,
                id=player.player_id,
                name=player.name,
                total_score=player.score,
                round_scores=list(player.round_scores),
                max_streak=player.best_streak,
            )
            for rank, player in enumerate(ordered, start=1)
        ]

    @staticmethod
    async def _broadcast(room: Room, message: WireModel) -> None:
        await broadcast_to_players(room.players, message.to_wire())
