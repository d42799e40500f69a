from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import uuid4

from ...application.sync.projection import ProjectionCache
from ...application.sync.subscriber import Interest
from ...core.domain.models import ChangeEvent, ChangeType
from ...core.domain.rows import MessageRow, parse_row
from ...core.errors import BackendError, DomainError
from .base import Screen, ScreenContext

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ChatMessage:
    id: str
    thread_id: str
    sender_id: str
    content: str
    created_at: datetime
    read_at: Optional[datetime] = None
    provisional: bool = False
    correlation_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: MessageRow) -> "ChatMessage":
        return cls(row.id, row.thread_id, row.sender_id, row.content, row.created_at, row.read_at)


class ChatScreen(Screen):
    """One thread, oldest first, with optimistic sending.

    A sent message shows up at once as provisional. The server echo replaces
    it when thread, sender and content match and the timestamps are within
    ``ECHO_MATCH_WINDOW_SECONDS``; a failed send removes it and puts the text
    back into the draft.
    """

    name = "chat"
    load_error_title = "Load messages error"

    def __init__(
        self, ctx: ScreenContext, thread_id: str, other_id: Optional[str] = None, label: Optional[str] = None
    ) -> None:
        super().__init__(ctx)
        self.thread_id = thread_id
        self.other_id = other_id
        self.label = label
        self.draft = ""
        self.cache: ProjectionCache[ChatMessage] = ProjectionCache(f"chat:{thread_id}")

    @property
    def title(self) -> str:
        return self.label or self.other_id or self.thread_id

    @property
    def messages(self) -> list[ChatMessage]:
        return sorted(self.cache, key=lambda m: (m.created_at, m.provisional, m.id))

    @property
    def pending(self) -> list[ChatMessage]:
        return [m for m in self.messages if m.provisional]

    def is_mine(self, message: ChatMessage) -> bool:
        return message.sender_id == self.user_id

    async def mount(self) -> None:
        await super().mount()
        if self.active:
            await self.mark_read()

    async def load(self) -> None:
        token = self.cache.begin_reload()
        rows = await self.ctx.messaging.thread_messages(self.thread_id)
        if not self.active:
            return
        loaded = [ChatMessage.from_row(r) for r in rows]
        # provisional messages survive a reload until their echo shows up
        keep = [p for p in self.pending if not any(self._is_echo(p, m) for m in loaded)]
        self.cache.replace_all(token, loaded + keep)

    async def mark_read(self) -> None:
        try:
            await self.ctx.messaging.mark_thread_read(self.user_id, self.thread_id)
        except BackendError as e:
            logger.warning("MARK_READ_FAILED thread=%s err=%s", self.thread_id, e)

    def _is_echo(self, provisional: ChatMessage, message: ChatMessage) -> bool:
        window = self.ctx.settings.ECHO_MATCH_WINDOW_SECONDS
        return (
            provisional.provisional
            and not message.provisional
            and provisional.thread_id == message.thread_id
            and provisional.sender_id == message.sender_id
            and provisional.content == message.content
            and abs((message.created_at - provisional.created_at).total_seconds()) <= window
        )

    async def send(self, text: Optional[str] = None) -> bool:
        content = (self.draft if text is None else text).strip()
        if not content:
            return False
        cid = f"local:{uuid4()}"
        local = ChatMessage(
            id=cid,
            thread_id=self.thread_id,
            sender_id=self.user_id,
            content=content,
            created_at=self.ctx.clock.now(),
            provisional=True,
            correlation_id=cid,
        )
        self.cache.apply(ChangeType.insert, local)
        self.draft = ""
        try:
            await self.ctx.messaging.send_message(self.thread_id, content)
        except DomainError as e:
            self.cache.remove(local.id)
            self.draft = content
            self.fail(e, "Send error")
            return False
        return True

    async def subscribe(self) -> None:
        await self.subscriber.open(
            f"messages-thread:{self.thread_id}",
            [
                Interest("messages", ChangeType.insert, "thread_id", self.thread_id),
                Interest("messages", ChangeType.update, "thread_id", self.thread_id),
            ],
            self._on_change,
            on_reconnect=self.reload,
        )

    async def _on_change(self, event: ChangeEvent) -> None:
        if not self.active:
            return
        row = parse_row(MessageRow, event.new, source="feed:messages")
        if row is None:
            return
        message = ChatMessage.from_row(row)
        if event.type is ChangeType.insert:
            for p in self.pending:
                if self._is_echo(p, message):
                    self.cache.remove(p.id)
                    break
        self.cache.apply(event.type, message)
        if event.type is ChangeType.insert and not self.is_mine(message):
            await self.mark_read()
