"""
Round targets and the collaborators that pick and match them.

The state machine never decides which item a round hunts for, nor whether a
recognizer label counts as that item. Both are injected: an ItemSelector
draws one target per round for the round's difficulty, and a ClaimMatcher
decides whether a submitted claim names the target. ItemCatalog and
KeywordClaimMatcher are the standalone defaults.
"""

from __future__ import annotations

import random
from collections.abc import Mapping, Sequence
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from hunt.logic.enums import Difficulty


class RoundTarget(BaseModel):
    """The item a room is searching for during one round."""

    model_config = ConfigDict(frozen=True)

    name: str
    difficulty: Difficulty
    keywords: tuple[str, ...] = ()


class Claim(BaseModel):
    """A recognizer's claim about what the player is showing."""

    model_config = ConfigDict(frozen=True)

    candidate_label: str = Field(min_length=1)
    confidence: float = Field(ge=0, le=1)


class ItemSelector(Protocol):
    def select(self, difficulty: Difficulty) -> RoundTarget: ...


class ClaimMatcher(Protocol):
    def matches(self, target: RoundTarget, claim: Claim) -> bool: ...


_DEFAULT_ITEMS: Mapping[Difficulty, Sequence[tuple[str, tuple[str, ...]]]] = {
    Difficulty.COMMON: (
        ("book", ("novel", "paperback", "hardcover", "textbook")),
        ("cup", ("mug", "glass")),
        ("spoon", ("teaspoon", "tablespoon")),
    ),
    Difficulty.SPECIFIC: (
        ("scissors", ("shears",)),
        ("remote control", ("remote", "clicker")),
        ("candle", ("tealight",)),
    ),
    Difficulty.RARE: (
        ("water bottle", ("bottle", "drinking bottle")),
        ("birthday card", ("greeting card",)),
    ),
}


class ItemCatalog:
    """In-memory item pool keyed by difficulty, drawn at random."""

    def __init__(
        self,
        items: Mapping[Difficulty, Sequence[tuple[str, tuple[str, ...]]]] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        source = items if items is not None else _DEFAULT_ITEMS
        self._targets: dict[Difficulty, list[RoundTarget]] = {
            difficulty: [RoundTarget(name=name, difficulty=difficulty, keywords=keywords) for name, keywords in entries]
            for difficulty, entries in source.items()
        }
        self._rng = rng or random.Random()  # noqa: S311

    def select(self, difficulty: Difficulty) -> RoundTarget:
        targets = self._targets.get(difficulty)
        if not targets:
            raise LookupError(f"no items for difficulty {difficulty.value}")
        return self._rng.choice(targets)


class KeywordClaimMatcher:
    """Match a claim when its label names the target or one of its keywords."""

    def matches(self, target: RoundTarget, claim: Claim) -> bool:
        label = claim.candidate_label.strip().lower()
        if not label:
            return False
        if target.name.lower() in label:
            return True
        return any(keyword.lower() in label for keyword in target.keywords)
