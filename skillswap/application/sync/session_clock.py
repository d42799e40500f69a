from __future__ import annotations

import asyncio
import contextlib
import logging
import math
from datetime import datetime
from typing import Callable, Optional

from ...core.domain.models import SessionState
from ...core.ports.services import Clock
from ...infrastructure.config import Settings, get_settings

logger = logging.getLogger(__name__)


def session_state(now: datetime, start: Optional[datetime], end: Optional[datetime]) -> SessionState:
    if start is None or end is None:
        return SessionState.after
    if now < start:
        return SessionState.before
    if now <= end:
        return SessionState.live
    return SessionState.after


def countdown(now: datetime, start: Optional[datetime], end: Optional[datetime]) -> str:
    """HH:MM:SS to the start (before) or to the end (live); empty afterwards."""
    state = session_state(now, start, end)
    if state is SessionState.after or start is None or end is None:
        return ""
    target = start if state is SessionState.before else end
    seconds = max(0, int((target - now).total_seconds()))
    h, rest = divmod(seconds, 3600)
    m, s = divmod(rest, 60)
    return f"{h:02d}:{m:02d}:{s:02d}"


def minutes_until(now: datetime, start: datetime) -> int:
    return math.floor((start - now).total_seconds() / 60)


class MeetingClock:
    """Drives the meeting screen: a fast tick for state/countdown and a coarse
    reminder check.

    The reminder fires once, on the first check where the whole minutes left
    equal the lead time. With a 60 s check the exact boundary can be missed.
    """

    def __init__(
        self,
        clock: Clock,
        start: Optional[datetime],
        end: Optional[datetime],
        *,
        on_tick: Callable[[SessionState, str], None] | None = None,
        on_reminder: Callable[[], None] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.clock = clock
        self.start_at = start
        self.end_at = end
        self.on_tick = on_tick
        self.on_reminder = on_reminder
        self.settings = settings or get_settings()
        self.reminded = False
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def state(self) -> SessionState:
        return session_state(self.clock.now(), self.start_at, self.end_at)

    @property
    def countdown(self) -> str:
        return countdown(self.clock.now(), self.start_at, self.end_at)

    def reschedule(self, start: Optional[datetime], end: Optional[datetime]) -> None:
        if start != self.start_at:
            self.reminded = False
        self.start_at = start
        self.end_at = end

    def tick(self) -> SessionState:
        state = self.state
        if self.on_tick is not None:
            self.on_tick(state, self.countdown)
        return state

    def check_reminder(self, now: Optional[datetime] = None) -> bool:
        if self.reminded or self.start_at is None:
            return False
        now = now or self.clock.now()
        if minutes_until(now, self.start_at) != self.settings.REMINDER_LEAD_MINUTES:
            return False
        self.reminded = True
        logger.info("SESSION_REMINDER start=%s", self.start_at.isoformat())
        if self.on_reminder is not None:
            self.on_reminder()
        return True

    async def _every(self, seconds: float, fn: Callable[[], object]) -> None:
        while True:
            await asyncio.sleep(seconds)
            try:
                fn()
            except Exception:
                logger.exception("CLOCK_CALLBACK_FAILED fn=%s", getattr(fn, "__name__", fn))

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._every(self.settings.SESSION_TICK_SECONDS, self.tick), name="meeting-tick"),
            asyncio.create_task(
                self._every(self.settings.REMINDER_TICK_SECONDS, self.check_reminder), name="meeting-reminder"
            ),
        ]

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
