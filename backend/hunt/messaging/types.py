from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

from hunt.logic.enums import EndReason, ErrorCode, RoomState, RoundEndReason

# ASCII control character boundaries for input validation
_SPACE_ORD = 0x20
_DEL_ORD = 0x7F

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 20


class ClientEvent(StrEnum):
    JOIN_GAME = "joinGame"
    ATTEMPT_REJOIN = "attemptRejoin"
    SUBMIT_ITEM = "submitItem"
    PING = "ping"


class ServerEvent(StrEnum):
    PLAYER_JOINED = "playerJoined"
    PLAYER_LEFT = "playerLeft"
    PLAYER_REJOINED = "playerRejoined"
    GAME_STARTING = "gameStarting"
    COUNTDOWN = "countdown"
    GAME_STARTED = "gameStarted"
    ROUND_STARTED = "roundStarted"
    ITEM_VERIFIED = "itemVerified"
    ROUND_ENDED = "roundEnded"
    GAME_ENDED = "gameEnded"
    REJOIN_RESULT = "rejoinResult"
    ERROR = "error"
    PONG = "pong"


class WireModel(BaseModel):
    """Base for every frame: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _reject_control_characters(value: str) -> str:
    if any(ord(c) < _SPACE_ORD or ord(c) == _DEL_ORD for c in value):
        raise ValueError("must not contain control characters")
    return value


# --- Inbound ---


class JoinGameMessage(WireModel):
    event: Literal[ClientEvent.JOIN_GAME] = ClientEvent.JOIN_GAME
    name: str = Field(max_length=200)

    @field_validator("name")
    @classmethod
    def _validate_name(cls, v: str) -> str:
        name = _reject_control_characters(v.strip())
        if not MIN_NAME_LENGTH <= len(name) <= MAX_NAME_LENGTH:
            raise ValueError(f"name must be {MIN_NAME_LENGTH}-{MAX_NAME_LENGTH} characters")
        return name


class AttemptRejoinMessage(WireModel):
    event: Literal[ClientEvent.ATTEMPT_REJOIN] = ClientEvent.ATTEMPT_REJOIN
    player_id: str = Field(min_length=1, max_length=100)


class SubmitItemMessage(WireModel):
    event: Literal[ClientEvent.SUBMIT_ITEM] = ClientEvent.SUBMIT_ITEM
    prediction: str = Field(min_length=1, max_length=200)
    confidence: float = Field(ge=0, le=1, allow_inf_nan=False)
    timestamp: float | None = None  # client clock, informational only

    @field_validator("prediction")
    @classmethod
    def _validate_prediction(cls, v: str) -> str:
        label = _reject_control_characters(v.strip())
        if not label:
            raise ValueError("prediction must not be blank")
        return label


class PingMessage(WireModel):
    event: Literal[ClientEvent.PING] = ClientEvent.PING


ClientMessage = JoinGameMessage | AttemptRejoinMessage | SubmitItemMessage | PingMessage

_client_message_adapter = TypeAdapter(Annotated[ClientMessage, Field(discriminator="event")])


def parse_client_message(data: dict[str, Any]) -> ClientMessage:
    """Parse a raw map into a typed inbound message, dispatching on "event"."""
    return _client_message_adapter.validate_python(data)


# --- Outbound payload parts ---


class PlayerSummary(WireModel):
    id: str
    name: str
    score: int
    streak: int


class RoundResult(WireModel):
    rank: int
    id: str
    name: str
    round_score: int
    total_score: int
    streak: int
    found: bool


class FinalResult(WireModel):
    rank: int
    id: str
    name: str
    total_score: int
    round_scores: list[int]
    max_streak: int


class GameStateSnapshot(WireModel):
    """Room state handed to a player who rejoined mid-game."""

    room_id: str
    state: RoomState
    round: int
    target_item: str | None = None
    time_remaining: int  # ms left in the active round, 0 outside a round
    players: list[PlayerSummary]


# --- Outbound ---


class PlayerJoinedMessage(WireModel):
    event: Literal[ServerEvent.PLAYER_JOINED] = ServerEvent.PLAYER_JOINED
    player_id: str
    name: str
    current_players: list[PlayerSummary]


class PlayerLeftMessage(WireModel):
    event: Literal[ServerEvent.PLAYER_LEFT] = ServerEvent.PLAYER_LEFT
    player_id: str
    remaining_players: int


class PlayerRejoinedMessage(WireModel):
    event: Literal[ServerEvent.PLAYER_REJOINED] = ServerEvent.PLAYER_REJOINED
    player_id: str
    name: str


class GameStartingMessage(WireModel):
    event: Literal[ServerEvent.GAME_STARTING] = ServerEvent.GAME_STARTING
    countdown: int


class CountdownMessage(WireModel):
    event: Literal[ServerEvent.COUNTDOWN] = ServerEvent.COUNTDOWN
    countdown: int


class GameStartedMessage(WireModel):
    event: Literal[ServerEvent.GAME_STARTED] = ServerEvent.GAME_STARTED
    round: int
    players: list[PlayerSummary]


class RoundStartedMessage(WireModel):
    event: Literal[ServerEvent.ROUND_STARTED] = ServerEvent.ROUND_STARTED
    round: int
    target_item: str
    duration: int  # ms


class ItemVerifiedMessage(WireModel):
    event: Literal[ServerEvent.ITEM_VERIFIED] = ServerEvent.ITEM_VERIFIED
    player_id: str
    name: str
    matched: bool
    score: int
    total_score: int
    streak: int
    time_bonus: int


class RoundEndedMessage(WireModel):
    event: Literal[ServerEvent.ROUND_ENDED] = ServerEvent.ROUND_ENDED
    round: int
    reason: RoundEndReason
    results: list[RoundResult]


class GameEndedMessage(WireModel):
    event: Literal[ServerEvent.GAME_ENDED] = ServerEvent.GAME_ENDED
    reason: EndReason
    results: list[FinalResult]


class RejoinResultMessage(WireModel):
    event: Literal[ServerEvent.REJOIN_RESULT] = ServerEvent.REJOIN_RESULT
    success: bool
    game_state: GameStateSnapshot | None = None


class ErrorMessage(WireModel):
    event: Literal[ServerEvent.ERROR] = ServerEvent.ERROR
    type: ErrorCode
    message: str
    remaining: int | None = None
    reset_in_ms: int | None = None


class PongMessage(WireModel):
    event: Literal[ServerEvent.PONG] = ServerEvent.PONG
