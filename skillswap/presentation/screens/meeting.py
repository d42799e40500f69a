from __future__ import annotations

import logging
from typing import Optional

from ...application.sync.session_clock import MeetingClock
from ...application.sync.subscriber import Interest
from ...core.domain.models import ChangeEvent, ChangeType, SessionState
from ...core.domain.rows import BookingRow, FeedbackRow, SlotRow
from ...core.domain.values import Rating
from ...core.errors import DomainError, ValidationError
from .base import Screen, ScreenContext, event_id

logger = logging.getLogger(__name__)


class MeetingScreen(Screen):
    name = "meeting"
    load_error_title = "Error"

    def __init__(self, ctx: ScreenContext, slot_id: str) -> None:
        super().__init__(ctx)
        self.slot_id = slot_id
        self.slot: Optional[SlotRow] = None
        self.booking: Optional[BookingRow] = None
        self.partner_id: Optional[str] = None
        self.partner_label = ""
        self.my_feedback: Optional[FeedbackRow] = None
        # last values pushed by the tick, what the header shows
        self.shown_state = SessionState.after
        self.shown_countdown = ""
        self.clock = MeetingClock(
            ctx.clock, None, None, on_tick=self._on_tick, on_reminder=self._remind, settings=ctx.settings
        )

    @property
    def state(self) -> SessionState:
        return self.clock.state

    @property
    def countdown(self) -> str:
        return self.clock.countdown

    @property
    def meeting_url(self) -> Optional[str]:
        return self.booking.meeting_url if self.booking else None

    @property
    def can_cancel(self) -> bool:
        if self.booking is None or self.slot is None:
            return False
        return self.user_id in (self.slot.user_id, self.booking.booker_id)

    async def mount(self) -> None:
        await super().mount()
        if self.active:
            self.clock.start()

    async def unmount(self) -> None:
        try:
            await self.clock.stop()
        finally:
            await super().unmount()

    async def load(self) -> None:
        uid = self.user_id
        slot = await self.ctx.scheduling.get_slot(self.slot_id)
        booking = await self.ctx.scheduling.booking_for_slot(self.slot_id) if slot else None
        partner_id = None
        if slot is not None and booking is not None:
            partner_id = booking.booker_id if uid == slot.user_id else slot.user_id
        label = ""
        if partner_id:
            profile = await self.ctx.people.get_profile(partner_id)
            label = (profile.display_name or profile.email or "") if profile else ""
        feedback = await self.ctx.scheduling.feedback_by(self.slot_id, uid)
        if not self.active:
            return
        self.slot = slot
        self.booking = booking
        self.partner_id = partner_id
        self.partner_label = label
        self.my_feedback = feedback
        self.clock.reschedule(slot.start_at if slot else None, slot.end_at if slot else None)
        self.clock.tick()

    def _on_tick(self, state: SessionState, countdown: str) -> None:
        if self.active:
            self.shown_state = state
            self.shown_countdown = countdown

    def _remind(self) -> None:
        if self.active:
            lead = self.ctx.settings.REMINDER_LEAD_MINUTES
            self.ctx.notifier.remind("Reminder", f"Your session starts in {lead} minutes.")

    async def open_chat(self) -> Optional[str]:
        if not self.partner_id:
            self.notify("No partner", "This session is not booked yet.")
            return None
        try:
            return await self.ctx.messaging.get_or_create_thread(self.partner_id)
        except DomainError as e:
            self.fail(e, "Chat error")
            return None

    def join_call(self) -> Optional[str]:
        url = self.meeting_url
        if not url:
            self.notify("No link yet", "Meeting link is not available.")
            return None
        return url

    async def cancel_booking(self) -> bool:
        if self.booking is None:
            return False
        if not self.can_cancel:
            self.notify("Not allowed", "Only the slot owner or the booker can cancel.")
            return False
        try:
            deleted = await self.ctx.scheduling.cancel_booking(self.booking.id)
        except DomainError as e:
            self.fail(e, "Cancel error")
            return False
        if not deleted:
            self.notify("Not found", "No booking to cancel.")
            return False
        self.booking = None
        self.partner_id = None
        self.partner_label = ""
        self.notify("Canceled", "Booking has been canceled.")
        return True

    async def submit_feedback(self, rating: int, note: Optional[str] = None) -> bool:
        if self.slot is None or not self.partner_id:
            self.notify("Not ready", "Missing session or partner.")
            return False
        if self.state is not SessionState.after:
            self.notify("Not yet", "Feedback opens once the session has ended.")
            return False
        try:
            stars = int(Rating(rating))
        except ValidationError as e:
            self.notify("Pick rating", str(e))
            return False
        text = (note or "").strip() or None
        try:
            if self.my_feedback is not None:
                updated = await self.ctx.scheduling.update_feedback(self.my_feedback.id, stars, text)
                if updated is not None:
                    self.my_feedback = updated
                self.notify("Saved", "Feedback updated.")
            else:
                self.my_feedback = await self.ctx.scheduling.add_feedback(
                    self.slot.id, self.user_id, self.partner_id, stars, text
                )
                self.notify("Thanks", "Feedback submitted.")
        except DomainError as e:
            self.fail(e, "Submit error")
            return False
        return True

    async def subscribe(self) -> None:
        await self.subscriber.open(
            f"meeting:{self.slot_id}",
            [
                Interest("bookings", None, "slot_id", self.slot_id),
                Interest("bookings", ChangeType.delete),
                Interest("availability_slots", ChangeType.update, "id", self.slot_id),
                Interest("availability_slots", ChangeType.delete, "id", self.slot_id),
            ],
            self._on_change,
            on_reconnect=self.reload,
        )

    async def _on_change(self, event: ChangeEvent) -> None:
        if not self.active:
            return
        if event.table == "bookings" and event.type is ChangeType.delete:
            mine = self.booking is not None and event_id(event) == self.booking.id
            if not mine and str(event.value("slot_id")) != self.slot_id:
                return
        await self.reload()
