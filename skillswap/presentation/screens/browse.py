from __future__ import annotations

import logging
from typing import Optional

from ...application.sync.projection import ProjectionCache
from ...application.sync.subscriber import Interest
from ...core.domain.models import ChangeEvent, ChangeType, SlotStatus, SlotView
from ...core.domain.rows import BookingRow, SlotRow, parse_row
from ...core.errors import ConflictError, DomainError
from .base import Screen, event_id

logger = logging.getLogger(__name__)


class BrowseSlotsScreen(Screen):
    """Future slots of other users, with booking status relative to the viewer."""

    name = "browse-slots"
    load_error_title = "Error"

    def __init__(self, ctx) -> None:
        super().__init__(ctx)
        self.cache: ProjectionCache[SlotRow] = ProjectionCache("browse-slots")
        self.bookings: dict[str, BookingRow] = {}
        self.owner_emails: dict[str, Optional[str]] = {}

    def status_of(self, slot_id: str) -> SlotStatus:
        booking = self.bookings.get(slot_id)
        if booking is None:
            return SlotStatus.bookable
        if booking.booker_id == self.user_id:
            return SlotStatus.booked_by_you
        return SlotStatus.booked

    @property
    def slots(self) -> list[SlotView]:
        now = self.ctx.clock.now()
        views = []
        for s in sorted(self.cache, key=lambda s: (s.start_at, s.id)):
            if s.end_at <= now or s.user_id == self.user_id:
                continue
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
                    status=self.status_of(s.id),
                    owner_email=self.owner_emails.get(s.user_id),
                )
            )
        return views

    def view(self, slot_id: str) -> Optional[SlotView]:
        return next((v for v in self.slots if v.id == slot_id), None)

    async def load(self) -> None:
        token = self.cache.begin_reload()
        slots = await self.ctx.scheduling.open_slots_of_others(self.user_id, self.ctx.clock.now())
        bookings = await self.ctx.scheduling.bookings_for(s.id for s in slots)
        owners = await self.ctx.people.profiles(s.user_id for s in slots)
        if not self.active or not self.cache.replace_all(token, slots):
            return
        self.bookings = {b.slot_id: b for b in bookings}
        self.owner_emails = {p.id: p.email for p in owners}

    async def book(self, slot_id: str) -> Optional[BookingRow]:
        view = self.view(slot_id)
        if view is None or not view.can_book:
            self.notify("Not available", "This slot can no longer be booked.")
            return None
        try:
            booking = await self.ctx.scheduling.book(slot_id, self.user_id)
        except ConflictError as e:
            self.fail(e, "Booking error")
            await self.reload()
            return None
        except DomainError as e:
            self.fail(e, "Booking error")
            return None
        if self.active:
            self.bookings[slot_id] = booking
        return booking

    async def cancel(self, slot_id: str) -> bool:
        try:
            booking = await self.ctx.scheduling.booking_for_slot(slot_id)
            if booking is None:
                self.notify("Not found", "No booking to cancel.")
                return False
            if booking.booker_id != self.user_id:
                self.notify("Not allowed", "Only the person who booked can cancel here.")
                return False
            deleted = await self.ctx.scheduling.cancel_booking(booking.id)
        except DomainError as e:
            self.fail(e, "Cancel error")
            return False
        if not deleted:
            self.notify("Not found", "No booking to cancel.")
            return False
        self.bookings.pop(slot_id, None)
        return True

    async def subscribe(self) -> None:
        await self.subscriber.open(
            f"browse-slots:{self.user_id}",
            [Interest("availability_slots"), Interest("bookings")],
            self._on_change,
            on_reconnect=self.reload,
        )

    async def _on_change(self, event: ChangeEvent) -> None:
        if not self.active:
            return
        if event.table == "bookings":
            self._on_booking(event)
            return
        if event.type is ChangeType.delete:
            sid = event_id(event)
            if sid is not None:
                self.cache.remove(sid)
                self.bookings.pop(sid, None)
            return
        row = parse_row(SlotRow, event.new, source="feed:availability_slots")
        if row is None or row.user_id == self.user_id:
            return
        self.cache.apply(event.type, row)
        if row.user_id not in self.owner_emails:
            await self._fetch_owner(row.user_id)

    async def _fetch_owner(self, owner_id: str) -> None:
        token = self.cache.patch_token()
        try:
            profiles = await self.ctx.people.profiles([owner_id])
        except DomainError as e:
            logger.warning("OWNER_LOOKUP_FAILED owner=%s err=%s", owner_id, e)
            return
        # a reload started meanwhile brings its own owner map
        if not self.active or not self.cache.is_current(token):
            return
        self.owner_emails[owner_id] = profiles[0].email if profiles else None

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
