"""Sliding window rate limiter keyed by (action type, subject)."""

import threading
import time
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass

from hunt.logic.enums import ActionType


@dataclass(frozen=True)
class RateLimit:
    max_actions: int
    window_ms: int

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000


@dataclass(frozen=True)
class RateRemaining:
    count: int
    reset_in_ms: int


DEFAULT_LIMITS: Mapping[ActionType, RateLimit] = {
    ActionType.ITEM_SUBMISSION: RateLimit(max_actions=5, window_ms=5_000),
    ActionType.ROOM_JOIN: RateLimit(max_actions=3, window_ms=60_000),
    ActionType.MESSAGE: RateLimit(max_actions=10, window_ms=10_000),
}


class SlidingWindowRateLimiter:
    """Rate limiter using a sliding log of action timestamps.

    Each (action type, subject) pair keeps the monotonic timestamps of its
    recent allowed actions. An action is allowed when fewer than max_actions
    of them fall inside the trailing window. allow() checks and records
    under one lock, so concurrent callers can never both take the last slot.
    Action types without a configured limit are always allowed.
    """

    def __init__(self, limits: Mapping[ActionType, RateLimit] | None = None) -> None:
        self._limits = dict(DEFAULT_LIMITS if limits is None else limits)
        self._windows: dict[tuple[ActionType, str], deque[float]] = {}
        self._lock = threading.Lock()

    def allow(self, action_type: ActionType, subject_id: str) -> bool:
        """Record the action and return True if allowed, False if rate-limited."""
        limit = self._limits.get(action_type)
        if limit is None:
            return True

        now = time.monotonic()
        key = (action_type, subject_id)
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                window = deque()
                self._windows[key] = window
            self._prune(window, now, limit)
            if len(window) >= limit.max_actions:
                return False
            window.append(now)
            return True

    def remaining(self, action_type: ActionType, subject_id: str) -> RateRemaining:
        """Actions left in the current window and ms until the oldest one expires. Read-only."""
        limit = self._limits.get(action_type)
        if limit is None:
            return RateRemaining(count=-1, reset_in_ms=0)

        now = time.monotonic()
        with self._lock:
            window = self._windows.get((action_type, subject_id), ())
            recent = [ts for ts in window if now - ts < limit.window_seconds]
        count = max(0, limit.max_actions - len(recent))
        if not recent:
            return RateRemaining(count=count, reset_in_ms=0)
        reset_in = limit.window_seconds - (now - recent[0])
        return RateRemaining(count=count, reset_in_ms=max(0, round(reset_in * 1000)))

    def clear(self, subject_id: str) -> None:
        """Drop every window belonging to a subject (called on disconnect)."""
        with self._lock:
            for key in [k for k in self._windows if k[1] == subject_id]:
                del self._windows[key]

    def cleanup(self) -> int:
        """Prune expired timestamps everywhere and drop empty windows. Returns windows dropped."""
        now = time.monotonic()
        dropped = 0
        with self._lock:
            for key in list(self._windows):
                limit = self._limits.get(key[0])
                window = self._windows[key]
                if limit is not None:
                    self._prune(window, now, limit)
                if not window:
                    del self._windows[key]
                    dropped += 1
        return dropped

    def snapshot(self) -> dict[str, dict[str, RateRemaining]]:
        """Remaining budget per subject and action type, for the status endpoint."""
        with self._lock:
            keys = list(self._windows)
        status: dict[str, dict[str, RateRemaining]] = {}
        for action_type, subject_id in keys:
            status.setdefault(subject_id, {})[action_type.value] = self.remaining(action_type, subject_id)
        return status

    @property
    def window_count(self) -> int:
        return len(self._windows)

    @staticmethod
    def _prune(window: deque[float], now: float, limit: RateLimit) -> None:
        while window and now - window[0] >= limit.window_seconds:
            window.popleft()
