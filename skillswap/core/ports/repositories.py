from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Optional

from ..domain.rows import (
    BookingRow,
    FeedbackRow,
    MatchRow,
    MessageRow,
    ProfileRow,
    SkillProofRow,
    SkillRow,
    SlotRow,
    ThreadRow,
    UserRatingRow,
    UserSkillRow,
)
from ..domain.values import SkillTitle


class MessagingRepository(ABC):
    @abstractmethod
    async def list_threads(self, user_id: str) -> list[ThreadRow]:
        raise NotImplementedError

    @abstractmethod
    async def recent_messages(self, thread_ids: Iterable[str], limit: int) -> list[MessageRow]:
        """Most recent ``limit`` messages across the given threads, newest first."""
        raise NotImplementedError

    @abstractmethod
    async def thread_messages(self, thread_id: str) -> list[MessageRow]:
        """Whole thread, oldest first."""
        raise NotImplementedError

    @abstractmethod
    async def get_or_create_thread(self, other_user_id: str) -> str:
        raise NotImplementedError

    @abstractmethod
    async def send_message(self, thread_id: str, content: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def mark_thread_read(self, user_id: str, thread_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def count_unread(self, user_id: str) -> int:
        raise NotImplementedError


class SchedulingRepository(ABC):
    @abstractmethod
    async def own_slots(self, user_id: str) -> list[SlotRow]:
        raise NotImplementedError

    @abstractmethod
    async def open_slots_of_others(self, user_id: str, now: datetime) -> list[SlotRow]:
        """Slots of other users that have not ended yet, by start ascending."""
        raise NotImplementedError

    @abstractmethod
    async def get_slot(self, slot_id: str) -> Optional[SlotRow]:
        raise NotImplementedError

    @abstractmethod
    async def create_slot(
        self, user_id: str, start_at: datetime, end_at: datetime, timezone: str, notes: Optional[str]
    ) -> SlotRow:
        raise NotImplementedError

    @abstractmethod
    async def update_slot(
        self, user_id: str, slot_id: str, start_at: datetime, end_at: datetime, timezone: str, notes: Optional[str]
    ) -> Optional[SlotRow]:
        """None when the slot does not exist or is not owned by ``user_id``."""
        raise NotImplementedError

    @abstractmethod
    async def delete_slot(self, user_id: str, slot_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def bookings_for(self, slot_ids: Iterable[str]) -> list[BookingRow]:
        raise NotImplementedError

    @abstractmethod
    async def booking_for_slot(self, slot_id: str) -> Optional[BookingRow]:
        raise NotImplementedError

    @abstractmethod
    async def book(self, slot_id: str, booker_id: str) -> BookingRow:
        raise NotImplementedError

    @abstractmethod
    async def cancel_booking(self, booking_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def feedback_by(self, slot_id: str, rater_id: str) -> Optional[FeedbackRow]:
        raise NotImplementedError

    @abstractmethod
    async def feedback_about(self, ratee_id: str) -> list[FeedbackRow]:
        raise NotImplementedError

    @abstractmethod
    async def add_feedback(
        self, slot_id: str, rater_id: str, ratee_id: str, rating: int, note: Optional[str]
    ) -> FeedbackRow:
        raise NotImplementedError

    @abstractmethod
    async def update_feedback(self, feedback_id: str, rating: int, note: Optional[str]) -> Optional[FeedbackRow]:
        raise NotImplementedError


class CatalogRepository(ABC):
    @abstractmethod
    async def list_skills(self) -> list[SkillRow]:
        raise NotImplementedError

    @abstractmethod
    async def find_skill(self, title: SkillTitle) -> Optional[SkillRow]:
        """Case-insensitive title lookup."""
        raise NotImplementedError

    @abstractmethod
    async def get_or_create_skill(self, title: SkillTitle) -> tuple[SkillRow, bool]:
        raise NotImplementedError

    @abstractmethod
    async def rename_skill(self, skill_id: str, title: SkillTitle) -> Optional[SkillRow]:
        raise NotImplementedError

    @abstractmethod
    async def delete_skill(self, skill_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def offers_of(self, user_id: str) -> list[UserSkillRow]:
        raise NotImplementedError

    @abstractmethod
    async def wants_of(self, user_id: str) -> list[UserSkillRow]:
        raise NotImplementedError

    @abstractmethod
    async def set_offer(self, user_id: str, skill_id: str, enabled: bool) -> None:
        raise NotImplementedError

    @abstractmethod
    async def set_want(self, user_id: str, skill_id: str, enabled: bool) -> None:
        raise NotImplementedError

    @abstractmethod
    async def approved_proofs(self, user_id: str) -> list[SkillProofRow]:
        raise NotImplementedError

    @abstractmethod
    async def add_proof(self, user_id: str, skill_id: str, storage_path: str) -> SkillProofRow:
        raise NotImplementedError


class PeopleRepository(ABC):
    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[ProfileRow]:
        raise NotImplementedError

    @abstractmethod
    async def profiles(self, user_ids: Iterable[str]) -> list[ProfileRow]:
        raise NotImplementedError

    @abstractmethod
    async def save_profile(self, user_id: str, display_name: Optional[str], bio: Optional[str]) -> ProfileRow:
        raise NotImplementedError

    @abstractmethod
    async def ratings(self, user_ids: Iterable[str]) -> list[UserRatingRow]:
        raise NotImplementedError

    @abstractmethod
    async def find_matches(self, user_id: str) -> list[MatchRow]:
        raise NotImplementedError
