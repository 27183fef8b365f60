"""
String enum definitions for scavenger-hunt game concepts.
"""

from enum import StrEnum


class RoomState(StrEnum):
    """Lifecycle state of a single room."""

    WAITING = "waiting"
    COUNTDOWN = "countdown"
    ACTIVE = "active"
    BETWEEN_ROUNDS = "between_rounds"
    ENDED = "ended"


class Difficulty(StrEnum):
    """Item difficulty tier, one per round in ascending order."""

    COMMON = "common"
    SPECIFIC = "specific"
    RARE = "rare"


class RoundEndReason(StrEnum):
    """Why a round stopped accepting submissions."""

    TIMEOUT = "timeout"
    ALL_FOUND = "all_found"


class EndReason(StrEnum):
    """Why a game ended."""

    COMPLETED = "completed"
    INSUFFICIENT_PLAYERS = "insufficient_players"
    ROOM_INACTIVE = "room_inactive"


class ActionType(StrEnum):
    """Throttled client action categories."""

    ITEM_SUBMISSION = "itemSubmission"
    ROOM_JOIN = "roomJoin"
    MESSAGE = "messageRate"


class ErrorCode(StrEnum):
    """Error codes sent to clients in error events."""

    INVALID_INPUT = "invalid_input"
    INVALID_MESSAGE = "invalid_message"
    RATE_LIMITED = "rate_limit"
    ROOM_FULL = "room_full"
    ROOM_NOT_FOUND = "room_not_found"
    ALREADY_IN_ROOM = "already_in_room"
    NOT_IN_ROOM = "not_in_room"
    NOT_ACTIVE = "not_active"
    UNKNOWN_PLAYER = "unknown_player"
    SUBMISSION_IN_FLIGHT = "submission_locked"
    ALREADY_FOUND = "already_found"
    INTERNAL_ERROR = "internal_error"
