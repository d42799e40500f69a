from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from ...core.domain.rows import BookingRow, FeedbackRow, SlotRow, parse_row, parse_rows
from ...core.errors import WriteError
from ...core.ports.backend import BackendClient, Query, eq
from ...core.ports.repositories import SchedulingRepository

SLOT_COLUMNS = "id,user_id,start_at,end_at,timezone,notes"
BOOKING_COLUMNS = "id,slot_id,booker_id,meeting_url"


def _first(model, rows, source):
    if not rows:
        return None
    return parse_row(model, rows[0], source=source)


class BackendSchedulingRepository(SchedulingRepository):
    def __init__(self, client: BackendClient) -> None:
        self.client = client

    # Slots

    async def own_slots(self, user_id: str) -> list[SlotRow]:  # type: ignore[override]
        q = Query("availability_slots", SLOT_COLUMNS).eq("user_id", user_id).order_by("start_at")
        return parse_rows(SlotRow, await self.client.select(q), source="availability_slots")

    async def open_slots_of_others(self, user_id: str, now: datetime) -> list[SlotRow]:  # type: ignore[override]
        q = (
            Query("availability_slots", SLOT_COLUMNS)
            .gt("end_at", now)
            .neq("user_id", user_id)
            .order_by("start_at")
        )
        return parse_rows(SlotRow, await self.client.select(q), source="availability_slots")

    async def get_slot(self, slot_id: str) -> Optional[SlotRow]:  # type: ignore[override]
        rows = await self.client.select(Query("availability_slots", SLOT_COLUMNS).eq("id", slot_id).take(1))
        return _first(SlotRow, rows, "availability_slots")

    async def create_slot(self, user_id, start_at, end_at, timezone, notes) -> SlotRow:  # type: ignore[override]
        rows = await self.client.insert(
            "availability_slots",
            {"user_id": user_id, "start_at": start_at, "end_at": end_at, "timezone": timezone, "notes": notes},
        )
        slot = _first(SlotRow, rows, "availability_slots")
        if slot is None:
            raise WriteError("slot insert returned no row")
        return slot

    async def update_slot(self, user_id, slot_id, start_at, end_at, timezone, notes) -> Optional[SlotRow]:  # type: ignore[override]
        rows = await self.client.update(
            "availability_slots",
            {"start_at": start_at, "end_at": end_at, "timezone": timezone, "notes": notes},
            [eq("id", slot_id), eq("user_id", user_id)],
        )
        return _first(SlotRow, rows, "availability_slots")

    async def delete_slot(self, user_id: str, slot_id: str) -> bool:  # type: ignore[override]
        rows = await self.client.delete("availability_slots", [eq("id", slot_id), eq("user_id", user_id)])
        return bool(rows)

    # Bookings

    async def bookings_for(self, slot_ids: Iterable[str]) -> list[BookingRow]:  # type: ignore[override]
        ids = list(slot_ids)
        if not ids:
            return []
        q = Query("bookings", BOOKING_COLUMNS).in_("slot_id", ids)
        return parse_rows(BookingRow, await self.client.select(q), source="bookings")

    async def booking_for_slot(self, slot_id: str) -> Optional[BookingRow]:  # type: ignore[override]
        rows = await self.client.select(Query("bookings", BOOKING_COLUMNS).eq("slot_id", slot_id).take(1))
        return _first(BookingRow, rows, "bookings")

    async def book(self, slot_id: str, booker_id: str) -> BookingRow:  # type: ignore[override]
        rows = await self.client.insert("bookings", {"slot_id": slot_id, "booker_id": booker_id})
        booking = _first(BookingRow, rows, "bookings")
        if booking is None:
            raise WriteError("booking insert returned no row")
        return booking

    async def cancel_booking(self, booking_id: str) -> bool:  # type: ignore[override]
        return bool(await self.client.delete("bookings", [eq("id", booking_id)]))

    # Feedback

    async def feedback_by(self, slot_id: str, rater_id: str) -> Optional[FeedbackRow]:  # type: ignore[override]
        q = Query("session_feedback").eq("slot_id", slot_id).eq("rater_id", rater_id).take(1)
        return _first(FeedbackRow, await self.client.select(q), "session_feedback")

    async def feedback_about(self, ratee_id: str) -> list[FeedbackRow]:  # type: ignore[override]
        q = Query("session_feedback").eq("ratee_id", ratee_id)
        return parse_rows(FeedbackRow, await self.client.select(q), source="session_feedback")

    async def add_feedback(self, slot_id, rater_id, ratee_id, rating, note) -> FeedbackRow:  # type: ignore[override]
        rows = await self.client.insert(
            "session_feedback",
            {"slot_id": slot_id, "rater_id": rater_id, "ratee_id": ratee_id, "rating": rating, "note": note},
        )
        fb = _first(FeedbackRow, rows, "session_feedback")
        if fb is None:
            raise WriteError("feedback insert returned no row")
        return fb

    async def update_feedback(self, feedback_id, rating, note) -> Optional[FeedbackRow]:  # type: ignore[override]
        rows = await self.client.update("session_feedback", {"rating": rating, "note": note}, [eq("id", feedback_id)])
        return _first(FeedbackRow, rows, "session_feedback")
