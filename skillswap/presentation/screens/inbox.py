from __future__ import annotations

from ...application.sync.previews import compose_previews
from ...application.sync.projection import ProjectionCache
from ...application.sync.subscriber import Interest
from ...core.domain.models import ChangeEvent, ChangeType, ThreadPreview
from ...core.domain.rows import MessageRow, ProfileRow, ThreadRow, parse_row
from .base import Screen


class InboxScreen(Screen):
    name = "inbox"
    load_error_title = "Load inbox error"

    def __init__(self, ctx) -> None:
        super().__init__(ctx)
        self.threads: ProjectionCache[ThreadRow] = ProjectionCache("inbox-threads")
        self.messages: ProjectionCache[MessageRow] = ProjectionCache("inbox-messages")
        self.profiles: dict[str, ProfileRow] = {}
        self.previews: list[ThreadPreview] = []

    @property
    def total_unread(self) -> int:
        return sum(p.unread_count for p in self.previews)

    async def load(self) -> None:
        uid = self.user_id
        t_token = self.threads.begin_reload()
        m_token = self.messages.begin_reload()
        threads = await self.ctx.messaging.list_threads(uid)
        messages = await self.ctx.messaging.recent_messages(
            (t.id for t in threads), self.ctx.settings.INBOX_MESSAGE_WINDOW
        )
        profiles = await self.ctx.people.profiles(t.other(uid) for t in threads)
        if not self.active:
            return
        if self.threads.replace_all(t_token, threads) and self.messages.replace_all(m_token, messages):
            self.profiles = {p.id: p for p in profiles}
            self.recompute()

    def recompute(self) -> None:
        self._trim()
        self.previews = compose_previews(self.user_id, self.threads, self.messages, self.profiles)

    def _trim(self) -> None:
        window = self.ctx.settings.INBOX_MESSAGE_WINDOW
        if len(self.messages) <= window:
            return
        ordered = sorted(self.messages, key=lambda m: m.created_at, reverse=True)
        for stale in ordered[window:]:
            self.messages.remove(stale.id)

    async def subscribe(self) -> None:
        await self.subscriber.open(
            f"inbox:{self.user_id}",
            [
                Interest("messages", ChangeType.insert),
                Interest("messages", ChangeType.update),
                Interest("threads", ChangeType.insert),
            ],
            self._on_change,
            on_reconnect=self.reload,
        )

    async def _on_change(self, event: ChangeEvent) -> None:
        if not self.active:
            return
        if event.table == "threads":
            thread = parse_row(ThreadRow, event.new, source="feed:threads")
            if thread is not None and thread.involves(self.user_id):
                await self.reload()
            return
        msg = parse_row(MessageRow, event.new, source="feed:messages")
        if msg is None or msg.thread_id not in self.threads:
            return
        self.messages.apply(event.type, msg)
        self.recompute()
