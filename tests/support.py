"""Test doubles shared by the suite."""

import asyncio
from datetime import datetime, timedelta, timezone

from skillswap.core.ports.services import Clock, Notifier

ALICE = 'aaaaaaaa-0000-0000-0000-000000000001'
BOB = 'bbbbbbbb-0000-0000-0000-000000000002'
CAROL = 'cccccccc-0000-0000-0000-000000000003'

# Monday
T0 = datetime(2025, 11, 3, 9, 0, tzinfo=timezone.utc)


class ManualClock(Clock):
    def __init__(self, start: datetime = T0):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now


class RecordingNotifier(Notifier):
    def __init__(self):
        self.alerts: list[tuple[str, str]] = []
        self.reminders: list[tuple[str, str]] = []

    def alert(self, title: str, message: str) -> None:
        self.alerts.append((title, message))

    def remind(self, title: str, message: str) -> None:
        self.reminders.append((title, message))

    @property
    def titles(self) -> list[str]:
        return [t for t, _ in self.alerts]


async def settle(rounds: int = 25) -> None:
    """Let feed pump tasks drain their queues."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_for(predicate, attempts: int = 100) -> bool:
    """Poll ``predicate`` on real time, for code driven by timers."""
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()
