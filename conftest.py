import os

# Keep Settings() independent of the developer's shell and .env
os.environ.setdefault('APP_ENV', 'test')
os.environ.setdefault('BACKEND', 'memory')
os.environ.setdefault('CHANGE_FEED_BACKEND', 'memory')
os.environ.setdefault('REDIS_URL', 'redis://localhost:6379/0')
os.environ.setdefault('LOG_LEVEL', 'DEBUG')


def pytest_configure():  # noqa: D401
    from skillswap.infrastructure.config import get_settings
    get_settings.cache_clear()  # type: ignore[attr-defined]
