from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class ChangeType(str, Enum):
    insert = "INSERT"
    update = "UPDATE"
    delete = "DELETE"


@dataclass(slots=True)
class ChangeEvent:
    """Row-level change notification as delivered by the change feed.

    ``new`` is absent for deletes, ``old`` is absent for inserts. Row images are
    plain JSON-compatible dicts; screens parse them into row records.
    """
    table: str
    type: ChangeType
    new: Optional[dict[str, Any]] = None
    old: Optional[dict[str, Any]] = None
    commit_ts: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    seq: int = 0

    @property
    def row(self) -> dict[str, Any]:
        return self.new if self.new is not None else (self.old or {})

    def value(self, column: str) -> Any:
        if self.new is not None and column in self.new:
            return self.new[column]
        if self.old is not None:
            return self.old.get(column)
        return None


class SessionState(str, Enum):
    before = "before"
    live = "live"
    after = "after"


class SlotStatus(str, Enum):
    free = "free"
    bookable = "bookable"
    booked = "booked"
    booked_by_you = "booked_by_you"

    @property
    def label(self) -> str:
        return _SLOT_LABELS[self]


_SLOT_LABELS = {
    SlotStatus.free: "Free",
    SlotStatus.bookable: "Book",
    SlotStatus.booked: "Booked",
    SlotStatus.booked_by_you: "Booked (you)",
}


@dataclass(slots=True)
class AuthSession:
    user_id: str
    access_token: str | None = None


@dataclass(slots=True)
class ThreadPreview:
    thread_id: str
    other_user_id: str
    other_user_name: str
    last_message: Optional[str]
    last_timestamp: Optional[datetime]
    unread_count: int = 0

    @property
    def has_unread(self) -> bool:
        return self.unread_count > 0


@dataclass(slots=True)
class SlotView:
    id: str
    owner_id: str
    start_at: datetime
    end_at: datetime
    timezone: str
    notes: Optional[str]
    booked_by: Optional[str]
    status: SlotStatus
    owner_email: Optional[str] = None

    @property
    def can_book(self) -> bool:
        return self.status is SlotStatus.bookable

    @property
    def can_cancel(self) -> bool:
        return self.status is SlotStatus.booked_by_you


@dataclass(slots=True)
class SkillSelection:
    skill_id: str
    title: str
    is_offer: bool = False
    is_want: bool = False
    is_verified: bool = False

    @property
    def needs_proof(self) -> bool:
        return self.is_offer and not self.is_verified


def thread_pair(a: str, b: str) -> tuple[str, str]:
    """Deterministic ordering of an unordered participant pair."""
    return (a, b) if a <= b else (b, a)
