from __future__ import annotations

from datetime import datetime
from typing import Optional

from ...application.sync.projection import ProjectionCache
from ...application.sync.subscriber import Interest
from ...core.domain.models import ChangeEvent, ChangeType, SlotStatus, SlotView
from ...core.domain.rows import BookingRow, SlotRow, parse_row
from ...core.domain.values import TimeRange
from ...core.errors import DomainError
from .base import Screen, event_id


class SessionsScreen(Screen):
    """The viewer's own availability slots, each marked Booked or Free."""

    name = "sessions"
    load_error_title = "Error"

    def __init__(self, ctx) -> None:
        super().__init__(ctx)
        self.cache: ProjectionCache[SlotRow] = ProjectionCache("sessions")
        self.bookings: dict[str, BookingRow] = {}

    @property
    def slots(self) -> list[SlotView]:
        views = []
        for s in sorted(self.cache, key=lambda s: (s.start_at, s.id)):
            booking = self.bookings.get(s.id)
            views.append(
                SlotView(
                    id=s.id,
                    owner_id=s.user_id,
                    start_at=s.start_at,
                    end_at=s.end_at,
                    timezone=s.timezone,
                    notes=s.notes,
                    booked_by=booking.booker_id if booking else None,
                    status=SlotStatus.booked if booking else SlotStatus.free,
                )
            )
        return views

    async def load(self) -> None:
        token = self.cache.begin_reload()
        slots = await self.ctx.scheduling.own_slots(self.user_id)
        bookings = await self.ctx.scheduling.bookings_for(s.id for s in slots)
        if not self.active or not self.cache.replace_all(token, slots):
            return
        self.bookings = {b.slot_id: b for b in bookings}

    async def save_slot(
        self,
        start_at: datetime,
        end_at: datetime,
        timezone: str = "UTC",
        notes: Optional[str] = None,
        slot_id: Optional[str] = None,
    ) -> bool:
        note = (notes or "").strip() or None
        try:
            span = TimeRange(start_at, end_at)
            if slot_id is None:
                row = await self.ctx.scheduling.create_slot(self.user_id, span.start, span.end, timezone, note)
            else:
                row = await self.ctx.scheduling.update_slot(self.user_id, slot_id, span.start, span.end, timezone, note)
        except DomainError as e:
            self.fail(e, "Add error" if slot_id is None else "Update error")
            return False
        if row is None:
            self.notify("Not allowed", "You can only edit your own slots.")
            return False
        await self.reload()
        return True

    async def delete_slot(self, slot_id: str) -> bool:
        try:
            deleted = await self.ctx.scheduling.delete_slot(self.user_id, slot_id)
        except DomainError as e:
            self.fail(e, "Delete error")
            return False
        if not deleted:
            self.notify("Not allowed", "You can only delete your own slots.")
            return False
        self.cache.remove(slot_id)
        self.bookings.pop(slot_id, None)
        return True

    async def subscribe(self) -> None:
        uid = self.user_id
        await self.subscriber.open(
            f"sessions:{uid}",
            [Interest("availability_slots", None, "user_id", uid), Interest("bookings")],
            self._on_change,
            on_reconnect=self.reload,
        )

    async def _on_change(self, event: ChangeEvent) -> None:
        if not self.active:
            return
        if event.table == "availability_slots":
            if event.type is ChangeType.delete:
                sid = event_id(event)
                if sid is not None:
                    self.cache.remove(sid)
                    self.bookings.pop(sid, None)
                return
            row = parse_row(SlotRow, event.new, source="feed:availability_slots")
            if row is not None:
                self.cache.apply(event.type, row)
            return
        self._on_booking(event)

    def _on_booking(self, event: ChangeEvent) -> None:
        if event.type is ChangeType.delete:
            bid = event_id(event)
            for slot_id, booking in list(self.bookings.items()):
                if booking.id == bid:
                    del self.bookings[slot_id]
            return
        booking = parse_row(BookingRow, event.new, source="feed:bookings")
        if booking is not None and booking.slot_id in self.cache:
            self.bookings[booking.slot_id] = booking
