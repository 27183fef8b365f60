"""Hunt server configuration via environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from hunt.logic.enums import ActionType, Difficulty
from hunt.logic.settings import DEFAULT_DIFFICULTIES, GameSettings
from hunt.server.rate_limit import RateLimit
from shared.validators import StringListEnvSettingsSource, parse_string_list

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class HuntServerSettings(BaseSettings):
    model_config = {"env_prefix": "HUNT_"}

    log_dir: str = Field(default="backend/logs/hunt", min_length=1)
    cors_origins: list[str] = ["http://localhost:5173"]
    max_connections: int = Field(default=500, ge=1)
    maintenance_interval_seconds: float = Field(default=30.0, gt=0)
    room_max_idle_seconds: float = Field(default=600.0, gt=0)
    recovery_ttl_seconds: float = Field(default=30.0, gt=0)

    # --- Rate limits: max actions per sliding window ---
    submission_limit: int = Field(default=5, ge=1)
    submission_window_ms: int = Field(default=5_000, ge=1)
    join_limit: int = Field(default=3, ge=1)
    join_window_ms: int = Field(default=60_000, ge=1)
    message_limit: int = Field(default=10, ge=1)
    message_window_ms: int = Field(default=10_000, ge=1)

    # --- Gameplay ---
    max_players: int = Field(default=8, ge=1)
    min_players: int = Field(default=2, ge=1)
    rounds_per_game: int = Field(default=3, ge=1)
    countdown_seconds: int = Field(default=5, ge=0)
    round_duration_ms: int = Field(default=60_000, gt=0)
    inter_round_delay_ms: int = Field(default=5_000, ge=0)
    confidence_floor: float = Field(default=0.4, ge=0, le=1)
    difficulties: list[Difficulty] = list(DEFAULT_DIFFICULTIES)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v)

    @field_validator("difficulties", mode="before")
    @classmethod
    def validate_difficulties(cls, v: str | list[str]) -> list[str]:
        return [item.lower() for item in parse_string_list(v)]

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, StringListEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings

    def game_settings(self) -> GameSettings:
        return GameSettings(
            max_players=self.max_players,
            min_players=self.min_players,
            rounds_per_game=self.rounds_per_game,
            countdown_seconds=self.countdown_seconds,
            round_duration_ms=self.round_duration_ms,
            inter_round_delay_ms=self.inter_round_delay_ms,
            difficulties=tuple(self.difficulties),
            confidence_floor=self.confidence_floor,
        )

    def rate_limits(self) -> dict[ActionType, RateLimit]:
        return {
            ActionType.ITEM_SUBMISSION: RateLimit(self.submission_limit, self.submission_window_ms),
            ActionType.ROOM_JOIN: RateLimit(self.join_limit, self.join_window_ms),
            ActionType.MESSAGE: RateLimit(self.message_limit, self.message_window_ms),
        }
