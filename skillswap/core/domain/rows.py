"""Typed row records, one per backend table.

Rows arrive as loosely-typed JSON (PostgREST responses, change-feed images).
They are validated here, at the boundary; anything malformed is logged and
dropped instead of leaking half-filled objects into screen state.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Annotated, Any, Iterable, Optional, Type, TypeVar

from pydantic import AfterValidator, AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)


def _to_str(v: Any) -> Any:
    # hosted schema mixes bigint and uuid keys
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(int(v))
    return v


def _as_utc(v: datetime) -> datetime:
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


def _none_to_list(v: Any) -> Any:
    return [] if v is None else v


RowId = Annotated[str, BeforeValidator(_to_str)]
UtcDateTime = Annotated[datetime, AfterValidator(_as_utc)]
TitleList = Annotated[list[str], BeforeValidator(_none_to_list)]


class Row(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class ProfileRow(Row):
    id: RowId
    display_name: Optional[str] = None
    email: Optional[str] = None
    bio: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.email or self.id[:8]


class SkillRow(Row):
    id: RowId
    title: str


class UserSkillRow(Row):
    """Row of ``user_offers`` or ``user_wants``."""
    user_id: RowId
    skill_id: RowId


class SkillProofRow(Row):
    id: RowId
    user_id: RowId
    skill_id: RowId
    storage_path: Optional[str] = None
    status: str = "pending"


class ThreadRow(Row):
    id: RowId
    user_a: RowId
    user_b: RowId

    def other(self, viewer_id: str) -> str:
        return self.user_b if self.user_a == viewer_id else self.user_a

    def involves(self, user_id: str) -> bool:
        return user_id in (self.user_a, self.user_b)


class MessageRow(Row):
    id: RowId
    thread_id: RowId
    sender_id: RowId
    content: str
    created_at: UtcDateTime
    read_at: Optional[UtcDateTime] = None

    def is_incoming_unread(self, viewer_id: str) -> bool:
        return self.sender_id != viewer_id and self.read_at is None


class SlotRow(Row):
    id: RowId
    user_id: RowId
    start_at: UtcDateTime
    end_at: UtcDateTime
    timezone: str = "UTC"
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _end_after_start(self) -> "SlotRow":
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


class BookingRow(Row):
    id: RowId
    slot_id: RowId
    booker_id: RowId
    meeting_url: Optional[str] = None


class FeedbackRow(Row):
    id: RowId
    slot_id: RowId
    rater_id: RowId
    ratee_id: RowId
    rating: int = Field(ge=1, le=5)
    note: Optional[str] = None


class UserRatingRow(Row):
    user_id: RowId
    avg_rating: Optional[float] = None
    rating_count: int = 0


class MatchRow(Row):
    other_id: RowId
    other_name: Optional[str] = None
    other_email: Optional[str] = None
    offer_to_them: TitleList = Field(default_factory=list)
    want_from_them: TitleList = Field(default_factory=list)
    overlap_weekday: Optional[int] = Field(default=None, validation_alias=AliasChoices("overlap_weekday", "first_overlap_weekday"))
    overlap_start_min: Optional[int] = Field(default=None, validation_alias=AliasChoices("overlap_start_min", "first_overlap_start_min"))
    overlap_end_min: Optional[int] = Field(default=None, validation_alias=AliasChoices("overlap_end_min", "first_overlap_end_min"))
    overlap_start_at: Optional[UtcDateTime] = None
    overlap_end_at: Optional[UtcDateTime] = None


R = TypeVar("R", bound=Row)


def parse_rows(model: Type[R], raw: Iterable[Any] | None, *, source: str = "") -> list[R]:
    result: list[R] = []
    for item in raw or []:
        parsed = parse_row(model, item, source=source)
        if parsed is not None:
            result.append(parsed)
    return result


def parse_row(model: Type[R], raw: Any, *, source: str = "") -> Optional[R]:
    if raw is None:
        return None
    try:
        return model.model_validate(raw)
    except PydanticValidationError as e:
        logger.warning("ROW_REJECTED model=%s source=%s errors=%s", model.__name__, source or "-", e.error_count())
        return None
