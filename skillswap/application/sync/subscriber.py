"""Screen-owned change-feed subscriptions.

A :class:`ChangeFeedSubscriber` belongs to one screen instance and keeps at
most one live :class:`Subscription` per scope key. Each subscription pumps its
feed stream on a task of its own; once ``close()`` has run no handler is
invoked again, whatever is still queued.
"""
from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from ...core.domain.models import ChangeEvent, ChangeType
from ...core.errors import SubscriptionError
from ...core.ports.services import ChangeFeedBus, FeedStream
from ...infrastructure.config import Settings, get_settings
from ...infrastructure.metrics import FEED_EVENTS, FEED_RECONNECTS

logger = logging.getLogger(__name__)

Handler = Callable[[ChangeEvent], Union[None, Awaitable[None]]]
ReconnectCallback = Callable[[], Union[None, Awaitable[None]]]


@dataclass(frozen=True, slots=True)
class Interest:
    """(table, event type[, column = value]) the handler wants to hear about."""
    table: str
    event: Optional[ChangeType] = None
    column: Optional[str] = None
    value: Any = None

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        if self.event is not None and event.type is not self.event:
            return False
        if self.column is not None and str(event.value(self.column)) != str(self.value):
            return False
        return True


async def _invoke(fn: Callable[..., Any], *args: Any) -> None:
    result = fn(*args)
    if inspect.isawaitable(result):
        await result


class Subscription:
    def __init__(
        self,
        key: str,
        bus: ChangeFeedBus,
        interests: Iterable[Interest],
        handler: Handler,
        *,
        on_reconnect: Optional[ReconnectCallback] = None,
        settings: Settings | None = None,
    ) -> None:
        self.key = key
        self.interests = tuple(interests)
        if not self.interests:
            raise ValueError("subscription needs at least one interest")
        self.tables = sorted({i.table for i in self.interests})
        self._bus = bus
        self._handler = handler
        self._on_reconnect = on_reconnect
        self._settings = settings or get_settings()
        self._stream: FeedStream | None = None
        self._task: asyncio.Task[None] | None = None
        self._closed = False
        self.reconnects = 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        if self._closed:
            raise SubscriptionError(f"subscription {self.key} already closed")
        self._stream = await self._bus.subscribe(self.tables)
        self._task = asyncio.create_task(self._pump(), name=f"feed:{self.key}")
        logger.debug("FEED_SUBSCRIBED scope=%s tables=%s", self.key, ",".join(self.tables))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        task, self._task = self._task, None
        stream, self._stream = self._stream, None
        if stream is not None:
            await stream.close()
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.debug("FEED_CLOSED scope=%s", self.key)

    async def _pump(self) -> None:
        while not self._closed:
            stream = self._stream
            if stream is None:
                return
            try:
                async for event in stream:
                    if self._closed:
                        return
                    await self._dispatch(event)
                if self._closed:
                    return
                logger.warning("FEED_ENDED scope=%s", self.key)
            except SubscriptionError as e:
                if self._closed:
                    return
                logger.warning("FEED_DROPPED scope=%s err=%s", self.key, e)
            await self._drop(stream)
            if not await self._reconnect():
                return

    async def _drop(self, stream: FeedStream) -> None:
        if self._stream is stream:
            self._stream = None
        try:
            await stream.close()
        except SubscriptionError as e:
            logger.debug("FEED_CLOSE_FAILED scope=%s err=%s", self.key, e)

    async def _reconnect(self) -> bool:
        base = self._settings.FEED_RECONNECT_BACKOFF_SECONDS
        cap = self._settings.FEED_RECONNECT_BACKOFF_MAX_SECONDS
        attempt = 0
        while not self._closed:
            attempt += 1
            delay = min(base * (2 ** (attempt - 1)), cap)
            logger.info("FEED_RECONNECT scope=%s attempt=%s delay=%.1fs", self.key, attempt, delay)
            await asyncio.sleep(delay)
            if self._closed:
                return False
            try:
                stream = await self._bus.subscribe(self.tables)
            except SubscriptionError as e:
                logger.warning("FEED_RECONNECT_FAILED scope=%s attempt=%s err=%s", self.key, attempt, e)
                continue
            if self._closed:
                await stream.close()
                return False
            self._stream = stream
            self.reconnects += 1
            FEED_RECONNECTS.inc()
            if self._on_reconnect is not None:
                try:
                    await _invoke(self._on_reconnect)
                except Exception:
                    logger.exception("FEED_RECONCILE_FAILED scope=%s", self.key)
            return True
        return False

    async def _dispatch(self, event: ChangeEvent) -> None:
        if not any(i.matches(event) for i in self.interests):
            return
        FEED_EVENTS.labels(event.table, event.type.value).inc()
        try:
            await _invoke(self._handler, event)
        except Exception:
            # a failing handler must not take the subscription down
            logger.exception("FEED_HANDLER_FAILED scope=%s table=%s type=%s", self.key, event.table, event.type.value)


class ChangeFeedSubscriber:
    """Subscriptions owned by one screen instance, at most one per scope key."""

    def __init__(self, bus: ChangeFeedBus, settings: Settings | None = None) -> None:
        self.bus = bus
        self.settings = settings or get_settings()
        self._subs: dict[str, Subscription] = {}

    async def open(
        self,
        key: str,
        interests: Iterable[Interest],
        handler: Handler,
        *,
        on_reconnect: Optional[ReconnectCallback] = None,
    ) -> Subscription:
        sub = Subscription(key, self.bus, interests, handler, on_reconnect=on_reconnect, settings=self.settings)
        previous = self._subs.get(key)
        self._subs[key] = sub
        if previous is not None:
            await previous.close()
        try:
            await sub.open()
        except Exception:
            if self._subs.get(key) is sub:
                del self._subs[key]
            raise
        return sub

    def get(self, key: str) -> Optional[Subscription]:
        return self._subs.get(key)

    @property
    def keys(self) -> list[str]:
        return sorted(self._subs)

    async def close(self, key: str) -> None:
        sub = self._subs.pop(key, None)
        if sub is not None:
            await sub.close()

    async def close_all(self) -> None:
        subs, self._subs = list(self._subs.values()), {}
        for sub in subs:
            await sub.close()
