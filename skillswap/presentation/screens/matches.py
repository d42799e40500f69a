from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ...core.domain.rows import MatchRow
from ...core.errors import DomainError, QueryError
from .base import Screen

logger = logging.getLogger(__name__)

WEEKDAYS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")


def _hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def match_title(row: MatchRow) -> str:
    for candidate in (row.other_email, row.other_name):
        if candidate and candidate.strip():
            return candidate
    return row.other_id


def overlap_text(row: MatchRow) -> str:
    if row.overlap_start_at is not None and row.overlap_end_at is not None:
        start, end = row.overlap_start_at, row.overlap_end_at
        end_fmt = "%H:%M" if end.date() == start.date() else "%a %Y-%m-%d %H:%M"
        return f"First overlap: {start:%a %Y-%m-%d %H:%M} - {end:{end_fmt}} UTC"
    if None not in (row.overlap_weekday, row.overlap_start_min, row.overlap_end_min):
        day = WEEKDAYS[row.overlap_weekday % 7]
        return f"First overlap: {day} {_hhmm(row.overlap_start_min)}-{_hhmm(row.overlap_end_min)}"
    return "No overlapping time yet"


def rating_text(avg: Optional[float], count: int) -> str:
    if avg is None:
        return "No ratings yet"
    return f"{avg:.1f} ({count})" if count else f"{avg:.1f}"


@dataclass(slots=True)
class MatchCard:
    row: MatchRow
    avg_rating: Optional[float] = None
    rating_count: int = 0

    @property
    def other_id(self) -> str:
        return self.row.other_id

    @property
    def title(self) -> str:
        return match_title(self.row)

    @property
    def teach(self) -> str:
        return ", ".join(self.row.offer_to_them)

    @property
    def learn(self) -> str:
        return ", ".join(self.row.want_from_them)

    @property
    def overlap(self) -> str:
        return overlap_text(self.row)

    @property
    def rating(self) -> str:
        return rating_text(self.avg_rating, self.rating_count)


class MatchesScreen(Screen):
    name = "matches"
    load_error_title = "Load matches error"

    def __init__(self, ctx) -> None:
        super().__init__(ctx)
        self.cards: list[MatchCard] = []

    async def load(self) -> None:
        rows = await self.ctx.people.find_matches(self.user_id)
        ratings = {}
        try:
            ratings = {r.user_id: r for r in await self.ctx.people.ratings(r.other_id for r in rows)}
        except QueryError as e:
            logger.warning("RATING_LOAD_FAILED err=%s", e)
        if not self.active:
            return
        cards = []
        for row in rows:
            r = ratings.get(row.other_id)
            cards.append(MatchCard(row, r.avg_rating if r else None, r.rating_count if r else 0))
        self.cards = cards

    async def ensure_chat(self, other_id: str) -> Optional[str]:
        try:
            return await self.ctx.messaging.get_or_create_thread(other_id)
        except DomainError as e:
            self.fail(e, "Chat error")
            return None
