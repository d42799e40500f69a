from __future__ import annotations

from typing import Iterable, Mapping

from ...core.domain.models import ThreadPreview
from ...core.domain.rows import MessageRow, ProfileRow, ThreadRow


def _newer(candidate: MessageRow, current: MessageRow | None) -> bool:
    if current is None:
        return True
    if candidate.created_at != current.created_at:
        return candidate.created_at > current.created_at
    return _id_key(candidate.id) > _id_key(current.id)


def _id_key(message_id: str) -> tuple[int, int, str]:
    # numeric ids compare as numbers, anything else lexically
    if message_id.isdigit():
        return (0, int(message_id), "")
    return (1, 0, message_id)


def other_party_label(user_id: str, profiles: Mapping[str, ProfileRow]) -> str:
    profile = profiles.get(user_id)
    if profile is not None:
        return profile.label
    return user_id[:8]


def compose_previews(
    viewer_id: str,
    threads: Iterable[ThreadRow],
    messages: Iterable[MessageRow],
    profiles: Mapping[str, ProfileRow] | None = None,
) -> list[ThreadPreview]:
    """Inbox rows: last message and incoming-unread count per thread.

    ``messages`` is the bounded recent window, so counts only cover what it
    holds. Threads with messages come first, newest activity first; threads
    without any message follow in input order.
    """
    profiles = profiles or {}
    threads = [t for t in threads if t.involves(viewer_id)]
    last: dict[str, MessageRow] = {}
    unread: dict[str, int] = {}
    known = {t.id for t in threads}
    for m in messages:
        if m.thread_id not in known:
            continue
        if _newer(m, last.get(m.thread_id)):
            last[m.thread_id] = m
        if m.is_incoming_unread(viewer_id):
            unread[m.thread_id] = unread.get(m.thread_id, 0) + 1

    previews: list[ThreadPreview] = []
    for t in threads:
        other = t.other(viewer_id)
        msg = last.get(t.id)
        previews.append(
            ThreadPreview(
                thread_id=t.id,
                other_user_id=other,
                other_user_name=other_party_label(other, profiles),
                last_message=msg.content if msg else None,
                last_timestamp=msg.created_at if msg else None,
                unread_count=unread.get(t.id, 0),
            )
        )
    with_msg = [p for p in previews if p.last_timestamp is not None]
    without = [p for p in previews if p.last_timestamp is None]
    with_msg.sort(key=lambda p: (p.last_timestamp, _id_key(last[p.thread_id].id)), reverse=True)
    return with_msg + without
