from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    # App
    APP_NAME: str = "SkillSwap"
    APP_ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # Backend: memory (in-process store) | rest (hosted PostgREST endpoint)
    BACKEND: Literal["memory", "rest"] = "memory"
    BACKEND_URL: str | None = None
    BACKEND_ANON_KEY: str | None = None
    BACKEND_TIMEOUT_SECONDS: float = 10.0

    # Change feed: memory | redis
    CHANGE_FEED_BACKEND: Literal["memory", "redis"] = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    CHANGE_FEED_CHANNEL_PREFIX: str = "skillswap:changes"

    # Inbox: how many recent messages feed the thread previews
    INBOX_MESSAGE_WINDOW: int = 1000

    # Unread badge reconciliation against count_unread_messages
    UNREAD_RESYNC_SECONDS: float = 30.0

    # Bounded retry for idempotent reads only
    READ_RETRY_ATTEMPTS: int = 3
    READ_RETRY_BACKOFF_SECONDS: float = 0.5

    # Feed reconnect backoff (doubles up to the max)
    FEED_RECONNECT_BACKOFF_SECONDS: float = 1.0
    FEED_RECONNECT_BACKOFF_MAX_SECONDS: float = 30.0

    # Meeting screen timers
    SESSION_TICK_SECONDS: float = 1.0
    REMINDER_TICK_SECONDS: float = 60.0
    REMINDER_LEAD_MINUTES: int = 15

    # Optimistic chat echo matching window
    ECHO_MATCH_WINDOW_SECONDS: float = 120.0


@lru_cache()
def get_settings() -> Settings:
    s = Settings()
    if s.BACKEND_URL:
        s.BACKEND_URL = s.BACKEND_URL.rstrip("/")
    return s
