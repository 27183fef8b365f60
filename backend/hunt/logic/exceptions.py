"""Typed domain exceptions for room and round rule violations.

Every client-visible failure is a subclass of HuntError carrying the
ErrorCode sent back in the error event. The gateway catches HuntError at
the boundary and converts it; nothing raising these leaves room state
partially mutated.
"""

from hunt.logic.enums import ErrorCode


class HuntError(Exception):
    """Base exception for recoverable, client-visible errors."""

    code: ErrorCode = ErrorCode.INVALID_INPUT

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidInputError(HuntError):
    """Malformed or out-of-range client input (bad name, bad payload)."""

    code = ErrorCode.INVALID_INPUT


class InvalidSubmissionError(InvalidInputError):
    """Submission rejected before scoring, e.g. confidence below the floor."""


class RateLimitedError(HuntError):
    """Action throttled by the rate limiter."""

    code = ErrorCode.RATE_LIMITED

    def __init__(self, message: str, *, remaining: int, reset_in_ms: int) -> None:
        self.remaining = remaining
        self.reset_in_ms = reset_in_ms
        super().__init__(message)


class RoomFullError(HuntError):
    code = ErrorCode.ROOM_FULL


class RoomNotFoundError(HuntError):
    code = ErrorCode.ROOM_NOT_FOUND


class AlreadyInRoomError(HuntError):
    code = ErrorCode.ALREADY_IN_ROOM


class NotInRoomError(HuntError):
    code = ErrorCode.NOT_IN_ROOM


class NotActiveError(HuntError):
    """Submission arrived while the room is not in an active round."""

    code = ErrorCode.NOT_ACTIVE


class UnknownPlayerError(HuntError):
    code = ErrorCode.UNKNOWN_PLAYER


class SubmissionInFlightError(HuntError):
    """A previous submission from the same player is still being scored."""

    code = ErrorCode.SUBMISSION_IN_FLIGHT


class AlreadyFoundError(HuntError):
    """Player already matched the current round's target."""

    code = ErrorCode.ALREADY_FOUND
