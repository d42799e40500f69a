"""Shared fixtures: an in-process backend on a manual clock, wired like a real session."""

from datetime import datetime, timedelta

import pytest

from skillswap.bootstrap.container import build_context
from skillswap.core.domain.models import AuthSession
from skillswap.infrastructure.backend.memory import InMemoryBackend
from skillswap.infrastructure.config import Settings
from skillswap.infrastructure.messaging.inmemory_feed import InMemoryChangeFeedBus

from support import ALICE, BOB, CAROL, ManualClock, RecordingNotifier


@pytest.fixture
def settings() -> Settings:
    return Settings(
        BACKEND='memory',
        CHANGE_FEED_BACKEND='memory',
        READ_RETRY_ATTEMPTS=3,
        READ_RETRY_BACKOFF_SECONDS=0,
        FEED_RECONNECT_BACKOFF_SECONDS=0.001,
        FEED_RECONNECT_BACKOFF_MAX_SECONDS=0.004,
        UNREAD_RESYNC_SECONDS=3600,
        SESSION_TICK_SECONDS=3600,
        REMINDER_TICK_SECONDS=3600,
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def bus() -> InMemoryChangeFeedBus:
    return InMemoryChangeFeedBus()


@pytest.fixture
def backend(bus, clock) -> InMemoryBackend:
    be = InMemoryBackend(bus=bus, clock=clock)
    be.seed('profiles', {'id': ALICE, 'display_name': 'Alice', 'email': 'alice@example.com', 'bio': None})
    be.seed('profiles', {'id': BOB, 'display_name': None, 'email': 'bob@example.com', 'bio': None})
    be.seed('profiles', {'id': CAROL, 'display_name': None, 'email': None, 'bio': None})
    return be


@pytest.fixture
def make_ctx(backend, bus, clock, notifier, settings):
    def _make(user_id: str, notifier_override=None):
        return build_context(
            AuthSession(user_id=user_id),
            settings,
            backend=backend.client(user_id),
            bus=bus,
            clock=clock,
            notifier=notifier_override or notifier,
        )
    return _make


@pytest.fixture
def seed_slot(backend):
    def _seed(owner: str, start: datetime, hours: float = 1.0, **extra):
        row = {'user_id': owner, 'start_at': start, 'end_at': start + timedelta(hours=hours), 'timezone': 'UTC', 'notes': None}
        row.update(extra)
        return backend.seed('availability_slots', row)
    return _seed
