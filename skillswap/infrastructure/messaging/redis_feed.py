from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, AsyncIterator, Iterable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ...core.domain.models import ChangeEvent, ChangeType
from ...core.errors import SubscriptionError
from ...core.ports.services import ChangeFeedBus, FeedStream
from ..config import get_settings

logger = logging.getLogger(__name__)


def encode_event(event: ChangeEvent) -> str:
    return json.dumps(
        {
            "table": event.table,
            "type": event.type.value,
            "new": event.new,
            "old": event.old,
            "commit_ts": event.commit_ts.isoformat(),
            "seq": event.seq,
        },
        default=str,
    )


def decode_event(raw: str | bytes) -> ChangeEvent:
    data = json.loads(raw)
    return ChangeEvent(
        table=data["table"],
        type=ChangeType(data["type"]),
        new=data.get("new"),
        old=data.get("old"),
        commit_ts=datetime.fromisoformat(data["commit_ts"]),
        seq=int(data.get("seq") or 0),
    )


class _RedisStream(FeedStream):
    def __init__(self, pubsub: Any, channels: list[str]) -> None:
        self._pubsub = pubsub
        self._channels = channels
        self._messages: AsyncIterator[dict[str, Any]] = pubsub.listen()
        self._closed = False

    async def __anext__(self) -> ChangeEvent:
        while True:
            if self._closed:
                raise StopAsyncIteration
            try:
                msg = await anext(self._messages)
            except RedisError as e:
                raise SubscriptionError(f"redis feed dropped: {e}") from e
            if msg is None or msg.get("type") != "message":
                continue
            try:
                return decode_event(msg["data"])
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("FEED_DECODE_FAILED channel=%s err=%s", msg.get("channel"), e)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._pubsub.unsubscribe(*self._channels)
        except RedisError as e:
            logger.debug("FEED_UNSUBSCRIBE_FAILED channels=%s err=%s", self._channels, e)
        finally:
            await self._pubsub.aclose()


class RedisChangeFeedBus(ChangeFeedBus):
    """Change feed over Redis pub/sub, one channel per table."""

    def __init__(self, redis: aioredis.Redis | None = None, prefix: str | None = None) -> None:
        self.settings = get_settings()
        self.redis = redis or aioredis.from_url(self.settings.REDIS_URL, decode_responses=True)
        self.prefix = prefix or self.settings.CHANGE_FEED_CHANNEL_PREFIX

    def _channel(self, table: str) -> str:
        return f"{self.prefix}:{table}"

    async def publish(self, event: ChangeEvent) -> None:
        await self.redis.publish(self._channel(event.table), encode_event(event))

    async def subscribe(self, tables: Iterable[str]) -> FeedStream:
        channels = sorted({self._channel(t) for t in tables})
        pubsub = self.redis.pubsub()
        try:
            await pubsub.subscribe(*channels)
        except RedisError as e:
            await pubsub.aclose()
            raise SubscriptionError(f"redis subscribe failed: {e}") from e
        return _RedisStream(pubsub, channels)
