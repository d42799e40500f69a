"""Wiring for one signed-in session."""
from __future__ import annotations

import logging
from functools import lru_cache

from ..core.domain.models import AuthSession
from ..core.ports.backend import BackendClient
from ..core.ports.services import ChangeFeedBus, Clock, Notifier
from ..infrastructure.backend.memory import InMemoryBackend
from ..infrastructure.backend.rest_client import RestBackendClient
from ..infrastructure.config import Settings, get_settings
from ..infrastructure.logging import configure_logging
from ..infrastructure.messaging.inmemory_feed import InMemoryChangeFeedBus
from ..infrastructure.messaging.redis_feed import RedisChangeFeedBus
from ..infrastructure.repositories.catalog import BackendCatalogRepository
from ..infrastructure.repositories.messaging import BackendMessagingRepository
from ..infrastructure.repositories.people import BackendPeopleRepository
from ..infrastructure.repositories.scheduling import BackendSchedulingRepository
from ..infrastructure.services.clock import SystemClock
from ..infrastructure.services.notifier import LoggingNotifier
from ..application.sync.unread import UnreadCounter
from ..presentation.screens.base import ScreenContext

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _memory_feed() -> InMemoryChangeFeedBus:
    # one bus per process so every screen sees the same events
    return InMemoryChangeFeedBus()


@lru_cache(maxsize=1)
def _memory_backend() -> InMemoryBackend:
    return InMemoryBackend(bus=build_change_feed())


def build_change_feed(settings: Settings | None = None) -> ChangeFeedBus:
    s = settings or get_settings()
    if s.CHANGE_FEED_BACKEND == "redis":
        return RedisChangeFeedBus(prefix=s.CHANGE_FEED_CHANNEL_PREFIX)
    return _memory_feed()


def build_backend(session: AuthSession, settings: Settings | None = None) -> BackendClient:
    s = settings or get_settings()
    if s.BACKEND == "rest":
        return RestBackendClient(s, session)
    return _memory_backend().client(session.user_id)


def build_context(
    session: AuthSession,
    settings: Settings | None = None,
    *,
    backend: BackendClient | None = None,
    bus: ChangeFeedBus | None = None,
    clock: Clock | None = None,
    notifier: Notifier | None = None,
) -> ScreenContext:
    s = settings or get_settings()
    client = backend or build_backend(session, s)
    logger.info("CONTEXT_READY user=%s backend=%s feed=%s", session.user_id, s.BACKEND, s.CHANGE_FEED_BACKEND)
    return ScreenContext(
        settings=s,
        session=session,
        backend=client,
        bus=bus or build_change_feed(s),
        clock=clock or SystemClock(),
        notifier=notifier or LoggingNotifier(),
        messaging=BackendMessagingRepository(client),
        scheduling=BackendSchedulingRepository(client),
        catalog=BackendCatalogRepository(client),
        people=BackendPeopleRepository(client),
    )


def build_unread_counter(ctx: ScreenContext) -> UnreadCounter:
    return UnreadCounter(ctx.user_id, ctx.messaging, ctx.bus, ctx.settings)


def init_app(settings: Settings | None = None) -> Settings:
    s = settings or get_settings()
    configure_logging(s.LOG_LEVEL)
    logger.info("APP_START name=%s env=%s", s.APP_NAME, s.APP_ENV)
    return s
