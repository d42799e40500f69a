from __future__ import annotations

import logging
from typing import Optional

from ...application.sync.subscriber import Interest
from ...core.domain.models import ChangeEvent, ChangeType
from ...core.domain.rows import ProfileRow
from ...core.errors import DomainError, QueryError
from .base import Screen

logger = logging.getLogger(__name__)


def profile_rating_text(avg: Optional[float], count: int) -> str:
    if not count or avg is None:
        return "No ratings yet"
    return f"{avg:.1f} / 5 ({count})"


class ProfileScreen(Screen):
    name = "profile"
    load_error_title = "Load profile error"

    def __init__(self, ctx) -> None:
        super().__init__(ctx)
        self.profile: Optional[ProfileRow] = None
        self.offers: list[str] = []
        self.wants: list[str] = []
        self.avg_rating: Optional[float] = None
        self.rating_count = 0

    @property
    def rating_text(self) -> str:
        return profile_rating_text(self.avg_rating, self.rating_count)

    async def load(self) -> None:
        uid = self.user_id
        profile = await self.ctx.people.get_profile(uid)
        skills = {s.id: s.title for s in await self.ctx.catalog.list_skills()}
        offers = await self.ctx.catalog.offers_of(uid)
        wants = await self.ctx.catalog.wants_of(uid)
        if not self.active:
            return
        self.profile = profile
        self.offers = sorted((skills[o.skill_id] for o in offers if o.skill_id in skills), key=str.casefold)
        self.wants = sorted((skills[w.skill_id] for w in wants if w.skill_id in skills), key=str.casefold)
        await self.load_ratings()

    async def load_ratings(self) -> None:
        try:
            feedback = await self.ctx.scheduling.feedback_about(self.user_id)
        except QueryError as e:
            # ratings are decoration; keep the previous numbers
            logger.warning("RATING_LOAD_FAILED user=%s err=%s", self.user_id, e)
            return
        if not self.active:
            return
        self.rating_count = len(feedback)
        self.avg_rating = sum(f.rating for f in feedback) / len(feedback) if feedback else None

    async def save_profile(self, display_name: Optional[str], bio: Optional[str]) -> bool:
        name = (display_name or "").strip() or None
        about = (bio or "").strip() or None
        try:
            self.profile = await self.ctx.people.save_profile(self.user_id, name, about)
        except DomainError as e:
            self.fail(e, "Save profile error")
            return False
        self.notify("Success", "Profile updated")
        return True

    async def subscribe(self) -> None:
        uid = self.user_id
        await self.subscriber.open(
            f"profile-live:{uid}",
            [
                Interest("user_offers", ChangeType.insert, "user_id", uid),
                Interest("user_offers", ChangeType.delete, "user_id", uid),
                Interest("user_wants", ChangeType.insert, "user_id", uid),
                Interest("user_wants", ChangeType.delete, "user_id", uid),
                Interest("skills", ChangeType.update),
                Interest("session_feedback", None, "ratee_id", uid),
            ],
            self._on_change,
            on_reconnect=self.reload,
        )

    async def _on_change(self, event: ChangeEvent) -> None:
        if not self.active:
            return
        if event.table == "session_feedback":
            await self.load_ratings()
        else:
            await self.reload()
