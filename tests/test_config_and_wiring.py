import logging

import pytest

from skillswap.bootstrap.container import build_backend, build_change_feed, build_context, init_app
from skillswap.core.domain.models import AuthSession
from skillswap.infrastructure.backend.memory import InMemoryBackendClient
from skillswap.infrastructure.backend.rest_client import RestBackendClient
from skillswap.infrastructure.config import Settings, get_settings
from skillswap.infrastructure.logging import JsonFormatter
from skillswap.infrastructure.messaging.inmemory_feed import InMemoryChangeFeedBus
from skillswap.infrastructure.services.notifier import LoggingNotifier

from support import ALICE


@pytest.fixture
def fresh_settings(monkeypatch):
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


def test_backend_url_trailing_slash_is_stripped(fresh_settings):
    fresh_settings.setenv('BACKEND_URL', 'https://project.example.co/')
    assert get_settings().BACKEND_URL == 'https://project.example.co'


def test_test_environment_defaults():
    s = get_settings()
    assert s.APP_ENV == 'test'
    assert s.BACKEND == 'memory'
    assert s.REMINDER_LEAD_MINUTES == 15


def test_memory_wiring_shares_one_store():
    s = Settings(BACKEND='memory', CHANGE_FEED_BACKEND='memory')
    alice = build_backend(AuthSession(user_id=ALICE), s)
    assert isinstance(alice, InMemoryBackendClient)
    assert build_change_feed(s) is build_change_feed(s)
    assert isinstance(build_change_feed(s), InMemoryChangeFeedBus)


def test_rest_wiring_uses_session_token():
    s = Settings(BACKEND='rest', BACKEND_URL='https://api.test', BACKEND_ANON_KEY='anon')
    client = build_backend(AuthSession(user_id=ALICE, access_token='jwt'), s)
    assert isinstance(client, RestBackendClient)
    assert client._headers()['Authorization'] == 'Bearer jwt'


def test_context_defaults(settings, caplog):
    ctx = build_context(AuthSession(user_id=ALICE), settings)
    assert ctx.user_id == ALICE
    assert isinstance(ctx.notifier, LoggingNotifier)
    ctx.notifier.alert('Success', 'Profile updated')
    assert 'ALERT title=Success' in caplog.text


def test_init_app_configures_logging(settings):
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    try:
        assert init_app(settings) is settings
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
    finally:
        root.handlers[:] = handlers
        root.setLevel(level)
