"""Centralized gameplay settings - round timings, room capacity and thresholds."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from hunt.logic.enums import Difficulty

DEFAULT_DIFFICULTIES = (Difficulty.COMMON, Difficulty.SPECIFIC, Difficulty.RARE)


class GameSettings(BaseModel):
    """
    Configuration for the room lifecycle and scoring rules.

    All fields have defaults matching the canonical gameplay values.
    """

    model_config = ConfigDict(frozen=True)

    # --- Room capacity ---
    max_players: int = Field(default=8, ge=1)
    min_players: int = Field(default=2, ge=1)

    # --- Round structure ---
    rounds_per_game: int = Field(default=3, ge=1)
    countdown_seconds: int = Field(default=5, ge=0)
    countdown_tick_seconds: float = Field(default=1.0, gt=0)
    round_duration_ms: int = Field(default=60_000, gt=0)
    inter_round_delay_ms: int = Field(default=5_000, ge=0)
    difficulties: tuple[Difficulty, ...] = Field(default=DEFAULT_DIFFICULTIES, min_length=1)

    # --- Submissions ---
    confidence_floor: float = Field(default=0.4, ge=0, le=1)

    @model_validator(mode="after")
    def _validate_player_bounds(self) -> GameSettings:
        if self.min_players > self.max_players:
            raise ValueError(f"min_players ({self.min_players}) exceeds max_players ({self.max_players})")
        return self

    @property
    def round_duration_seconds(self) -> float:
        return self.round_duration_ms / 1000

    @property
    def inter_round_delay_seconds(self) -> float:
        return self.inter_round_delay_ms / 1000

    def difficulty_for_round(self, round_number: int) -> Difficulty:
        """Difficulty tier for a 1-based round; rounds past the ladder reuse the last tier."""
        index = min(max(round_number, 1), len(self.difficulties)) - 1
        return self.difficulties[index]
