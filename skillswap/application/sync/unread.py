"""Unread badge: incremental counting reconciled against the authoritative count."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable, Optional

from ...core.domain.models import ChangeEvent, ChangeType
from ...core.domain.rows import MessageRow, ThreadRow, parse_row
from ...core.errors import BackendError, SubscriptionError
from ...core.ports.repositories import MessagingRepository
from ...core.ports.services import ChangeFeedBus
from ...infrastructure.config import Settings, get_settings
from ...infrastructure.metrics import UNREAD_DRIFT
from .subscriber import ChangeFeedSubscriber, Interest

logger = logging.getLogger(__name__)

BADGE_CAP = 99


def badge_label(count: int) -> Optional[str]:
    if count <= 0:
        return None
    if count > BADGE_CAP:
        return f"{BADGE_CAP}+"
    return str(count)


class UnreadCounter:
    """Per-user unread count, also the tab-bar badge controller.

    ``apply`` is the pure incremental rule. ``start`` seeds from
    ``count_unread_messages``, subscribes to message and thread events and runs
    the periodic resync; ``stop`` tears both down.
    """

    def __init__(
        self,
        user_id: str,
        messaging: MessagingRepository,
        bus: ChangeFeedBus,
        settings: Settings | None = None,
        on_change: Callable[[int], None] | None = None,
    ) -> None:
        self.user_id = user_id
        self.messaging = messaging
        self.settings = settings or get_settings()
        self.subscriber = ChangeFeedSubscriber(bus, self.settings)
        self.on_change = on_change
        self.thread_ids: set[str] = set()
        self._value = 0
        self._resync_task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def value(self) -> int:
        return self._value

    @property
    def badge(self) -> Optional[str]:
        return badge_label(self._value)

    def _set(self, value: int) -> None:
        value = max(0, value)
        if value == self._value:
            return
        self._value = value
        if self.on_change is not None:
            self.on_change(value)

    def apply(self, event: ChangeEvent) -> bool:
        """Fold one feed event into the count. Returns True when it changed."""
        before = self._value
        if event.table == "threads" and event.type is ChangeType.insert:
            thread = parse_row(ThreadRow, event.new, source="feed:threads")
            if thread is not None and thread.involves(self.user_id):
                self.thread_ids.add(thread.id)
            return False
        if event.table != "messages":
            return False
        msg = parse_row(MessageRow, event.new, source="feed:messages")
        if msg is None or msg.sender_id == self.user_id or msg.thread_id not in self.thread_ids:
            return False
        if event.type is ChangeType.insert:
            if msg.read_at is None:
                self._set(self._value + 1)
        elif event.type is ChangeType.update:
            was_unread = (event.old or {}).get("read_at") is None
            if was_unread and msg.read_at is not None:
                self._set(self._value - 1)
        return self._value != before

    async def refresh_threads(self) -> None:
        self.thread_ids = {t.id for t in await self.messaging.list_threads(self.user_id)}

    async def resync(self) -> int:
        """Overwrite the incremental value with the authoritative count."""
        try:
            await self.refresh_threads()
            authoritative = await self.messaging.count_unread(self.user_id)
        except BackendError as e:
            logger.warning("UNREAD_RESYNC_FAILED user=%s err=%s", self.user_id, e)
            return self._value
        if authoritative != self._value:
            UNREAD_DRIFT.inc()
            logger.warning(
                "UNREAD_DRIFT user=%s local=%s authoritative=%s", self.user_id, self._value, authoritative
            )
        self._set(authoritative)
        return self._value

    @property
    def feed_key(self) -> str:
        return f"unread:{self.user_id}"

    async def subscribe(self) -> bool:
        try:
            await self.subscriber.open(
                self.feed_key,
                [
                    Interest("messages", ChangeType.insert),
                    Interest("messages", ChangeType.update),
                    Interest("threads", ChangeType.insert),
                ],
                self.apply,
                on_reconnect=self.resync,
            )
        except SubscriptionError as e:
            logger.warning("UNREAD_SUBSCRIBE_FAILED user=%s err=%s", self.user_id, e)
            return False
        return True

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        await self.subscribe()
        await self.resync()
        self._resync_task = asyncio.create_task(self._resync_loop(), name=f"unread-resync:{self.user_id}")

    async def _resync_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.settings.UNREAD_RESYNC_SECONDS)
            if not self._running:
                break
            # feed was down at start
            if self.subscriber.get(self.feed_key) is None:
                await self.subscribe()
            await self.resync()

    async def stop(self) -> None:
        self._running = False
        task, self._resync_task = self._resync_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.subscriber.close_all()
