from __future__ import annotations

from typing import Iterable

from ...core.domain.rows import MessageRow, ThreadRow, parse_rows
from ...core.errors import QueryError
from ...core.ports.backend import BackendClient, Query, eq
from ...core.ports.repositories import MessagingRepository


class BackendMessagingRepository(MessagingRepository):
    def __init__(self, client: BackendClient) -> None:
        self.client = client

    async def list_threads(self, user_id: str) -> list[ThreadRow]:  # type: ignore[override]
        q = Query("threads", "id,user_a,user_b").or_(eq("user_a", user_id), eq("user_b", user_id))
        return parse_rows(ThreadRow, await self.client.select(q), source="threads")

    async def recent_messages(self, thread_ids: Iterable[str], limit: int) -> list[MessageRow]:  # type: ignore[override]
        ids = list(thread_ids)
        if not ids:
            return []
        q = (
            Query("messages", "id,thread_id,sender_id,content,created_at,read_at")
            .in_("thread_id", ids)
            .order_by("created_at", desc=True)
            .take(limit)
        )
        return parse_rows(MessageRow, await self.client.select(q), source="messages")

    async def thread_messages(self, thread_id: str) -> list[MessageRow]:  # type: ignore[override]
        q = Query("messages").eq("thread_id", thread_id).order_by("created_at")
        return parse_rows(MessageRow, await self.client.select(q), source="messages")

    async def get_or_create_thread(self, other_user_id: str) -> str:  # type: ignore[override]
        data = await self.client.rpc("get_or_create_thread", {"p_other": other_user_id})
        if isinstance(data, list):
            data = data[0] if data else None
        if isinstance(data, dict):
            data = data.get("id") or data.get("get_or_create_thread")
        if data is None:
            raise QueryError("get_or_create_thread returned no thread id")
        return str(data)

    async def send_message(self, thread_id: str, content: str) -> None:  # type: ignore[override]
        await self.client.rpc("send_message", {"p_thread": thread_id, "p_content": content})

    async def mark_thread_read(self, user_id: str, thread_id: str) -> None:  # type: ignore[override]
        await self.client.rpc("mark_thread_read", {"p_user": user_id, "p_thread": thread_id})

    async def count_unread(self, user_id: str) -> int:  # type: ignore[override]
        data = await self.client.rpc("count_unread_messages", {"p_user": user_id})
        try:
            return int(data or 0)
        except (TypeError, ValueError) as exc:
            raise QueryError(f"count_unread_messages returned {data!r}") from exc
