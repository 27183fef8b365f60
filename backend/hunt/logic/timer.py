"""
Single cancelable scheduled transition per room.

A room never has two competing timers: arming always cancels whatever was
armed before. Countdown ticks, round deadlines and inter-round delays all
go through the same handle, so a forced early end only has to cancel one
thing to prevent a stale transition from firing.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


class RoomTimer:
    """Hold at most one armed asyncio task for a room."""

    def __init__(self) -> None:
        self._active_task: asyncio.Task[None] | None = None
        self._label: str | None = None

    @property
    def armed(self) -> bool:
        return self._active_task is not None and not self._active_task.done()

    @property
    def label(self) -> str | None:
        """Name of the armed transition (e.g. "countdown", "round_deadline"), None when idle."""
        return self._label if self.armed else None

    def arm(self, seconds: float, on_fire: Callable[[], Awaitable[None]], label: str) -> None:
        """Cancel any armed transition, then schedule on_fire after the given delay."""
        self.cancel()
        self._label = label
        self._active_task = asyncio.create_task(self._run(seconds, on_fire, label))

    def cancel(self) -> None:
        """Cancel the armed transition, if any.

        A callback re-arming its own room from inside the firing task must not
        cancel itself, so the currently running task is only detached.
        """
        task = self._active_task
        self._active_task = None
        self._label = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run(self, seconds: float, on_fire: Callable[[], Awaitable[None]], label: str) -> None:
        try:
            await asyncio.sleep(seconds)
            await on_fire()
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("room timer callback failed", timer=label)
