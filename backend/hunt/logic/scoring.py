"""
Point calculation for a matched submission.

Points depend on how quickly the item was found within the round, which
round of the game it is, and the player's current streak of consecutive
finds. Arithmetic is done on exact fractions so identical inputs always
floor to the same integer regardless of float rounding.
"""

import math
from fractions import Fraction

BASE_POINTS = 100
MAX_TIME_BONUS = 50
ROUND_MULTIPLIER_STEP = Fraction(1, 2)  # +0.5x per round after the first
STREAK_BONUS_STEP = Fraction(1, 10)  # +0.1x per streak
STREAK_BONUS_CAP = Fraction(1, 2)  # streak bonus never exceeds +0.5x


def time_bonus(time_elapsed_ms: float, round_duration_ms: float) -> int:
    """Bonus points for speed: 50 at the start of the round, 0 at or past the deadline."""
    fraction_left = 1 - Fraction(time_elapsed_ms) / Fraction(round_duration_ms)
    return math.floor(MAX_TIME_BONUS * max(Fraction(0), fraction_left))


def round_multiplier(round_number: int) -> Fraction:
    """1x, 1.5x, 2x for rounds 1, 2, 3 and so on."""
    return 1 + (round_number - 1) * ROUND_MULTIPLIER_STEP


def streak_multiplier(current_streak: int) -> Fraction:
    if current_streak <= 0:
        return Fraction(1)
    return 1 + min(current_streak * STREAK_BONUS_STEP, STREAK_BONUS_CAP)


def score(time_elapsed_ms: float, round_duration_ms: float, round_number: int, current_streak: int) -> int:
    """
    Compute the points awarded for a matched submission.

    Pure function: no side effects, identical output for identical inputs.
    current_streak is the streak before this find is counted.
    """
    if round_duration_ms <= 0:
        raise ValueError(f"round_duration_ms must be positive, got {round_duration_ms}")
    if round_number < 1:
        raise ValueError(f"round_number must be >= 1, got {round_number}")

    points = (BASE_POINTS + time_bonus(time_elapsed_ms, round_duration_ms)) * round_multiplier(round_number)
    return math.floor(points * streak_multiplier(current_streak))
