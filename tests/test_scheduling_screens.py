from datetime import timedelta

import pytest

from skillswap.core.domain.models import SessionState, SlotStatus
from skillswap.presentation.screens.browse import BrowseSlotsScreen
from skillswap.presentation.screens.meeting import MeetingScreen
from skillswap.presentation.screens.sessions import SessionsScreen

from support import ALICE, BOB, CAROL, T0, RecordingNotifier, settle, wait_for


@pytest.mark.asyncio
async def test_booking_shows_up_for_everyone(make_ctx, seed_slot):
    slot = seed_slot(ALICE, T0 + timedelta(days=1))
    seed_slot(ALICE, T0 - timedelta(hours=3))  # already over
    bob_screen = BrowseSlotsScreen(make_ctx(BOB))
    carol_screen = BrowseSlotsScreen(make_ctx(CAROL))
    alice_screen = BrowseSlotsScreen(make_ctx(ALICE))
    for s in (bob_screen, carol_screen, alice_screen):
        await s.mount()
    try:
        assert [v.id for v in bob_screen.slots] == [slot['id']]
        assert bob_screen.slots[0].status.label == 'Book'
        assert bob_screen.slots[0].owner_email == 'alice@example.com'
        assert alice_screen.slots == []

        assert await bob_screen.book(slot['id']) is not None
        await settle()
        assert bob_screen.view(slot['id']).status.label == 'Booked (you)'
        assert carol_screen.view(slot['id']).status is SlotStatus.booked
        assert carol_screen.view(slot['id']).booked_by == BOB

        assert await bob_screen.cancel(slot['id'])
        await settle()
        assert carol_screen.view(slot['id']).booked_by is None
        assert carol_screen.view(slot['id']).can_book
    finally:
        for s in (bob_screen, carol_screen, alice_screen):
            await s.unmount()


@pytest.mark.asyncio
async def test_stale_view_booking_conflict_reloads(make_ctx, seed_slot):
    slot = seed_slot(ALICE, T0 + timedelta(days=1))
    notifier = RecordingNotifier()
    carol_screen = BrowseSlotsScreen(make_ctx(CAROL, notifier))
    # loaded but not subscribed, so it keeps showing the slot as free
    carol_screen.active = True
    await carol_screen.reload()
    await make_ctx(BOB).scheduling.book(slot['id'], BOB)
    assert carol_screen.view(slot['id']).can_book

    assert await carol_screen.book(slot['id']) is None
    assert notifier.titles == ['Conflict']
    assert carol_screen.view(slot['id']).status is SlotStatus.booked
    await carol_screen.unmount()


@pytest.mark.asyncio
async def test_only_the_booker_cancels_from_browse(make_ctx, seed_slot, notifier):
    slot = seed_slot(ALICE, T0 + timedelta(days=1))
    await make_ctx(BOB).scheduling.book(slot['id'], BOB)
    carol_screen = BrowseSlotsScreen(make_ctx(CAROL))
    await carol_screen.mount()
    assert not await carol_screen.cancel(slot['id'])
    assert notifier.titles == ['Not allowed']
    await carol_screen.unmount()


@pytest.mark.asyncio
async def test_own_slots_editor(make_ctx, notifier):
    alice_screen = SessionsScreen(make_ctx(ALICE))
    await alice_screen.mount()
    try:
        start = T0 + timedelta(days=2)
        assert await alice_screen.save_slot(start, start + timedelta(hours=1), notes='  bring a guitar ')
        [view] = alice_screen.slots
        assert (view.status.label, view.notes) == ('Free', 'bring a guitar')

        assert not await alice_screen.save_slot(start, start)
        assert notifier.titles == ['Invalid input']

        await make_ctx(BOB).scheduling.book(view.id, BOB)
        await settle()
        assert alice_screen.slots[0].status.label == 'Booked'
        assert alice_screen.slots[0].booked_by == BOB

        moved = start + timedelta(hours=3)
        assert await alice_screen.save_slot(moved, moved + timedelta(hours=1), slot_id=view.id)
        assert alice_screen.slots[0].start_at == moved

        assert await alice_screen.delete_slot(view.id)
        assert alice_screen.slots == []
    finally:
        await alice_screen.unmount()


@pytest.mark.asyncio
async def test_editing_someone_elses_slot_is_not_allowed(make_ctx, seed_slot, notifier):
    slot = seed_slot(ALICE, T0 + timedelta(days=1))
    bob_screen = SessionsScreen(make_ctx(BOB))
    await bob_screen.mount()
    start = T0 + timedelta(days=3)
    assert not await bob_screen.save_slot(start, start + timedelta(hours=1), slot_id=slot['id'])
    assert not await bob_screen.delete_slot(slot['id'])
    assert notifier.titles == ['Not allowed', 'Not allowed']
    await bob_screen.unmount()


@pytest.mark.asyncio
async def test_meeting_lifecycle(make_ctx, seed_slot, clock, notifier):
    slot = seed_slot(ALICE, T0 + timedelta(minutes=20))
    await make_ctx(BOB).scheduling.book(slot['id'], BOB)
    bob_meeting = MeetingScreen(make_ctx(BOB), slot['id'])
    alice_meeting = MeetingScreen(make_ctx(ALICE), slot['id'])
    await bob_meeting.mount()
    await alice_meeting.mount()
    try:
        assert (bob_meeting.partner_id, bob_meeting.partner_label) == (ALICE, 'Alice')
        assert alice_meeting.partner_label == 'bob@example.com'
        assert bob_meeting.state is SessionState.before
        assert bob_meeting.countdown == '00:20:00'
        assert bob_meeting.join_call() is None

        clock.advance(minutes=5)
        assert bob_meeting.clock.check_reminder()
        assert not bob_meeting.clock.check_reminder()
        assert notifier.reminders[0] == ('Reminder', 'Your session starts in 15 minutes.')

        assert not await bob_meeting.submit_feedback(5)
        clock.advance(minutes=30)
        assert bob_meeting.state is SessionState.live
        clock.advance(hours=1)
        assert bob_meeting.state is SessionState.after
        assert not await bob_meeting.submit_feedback(0)
        assert await bob_meeting.submit_feedback(5, 'patient and clear')
        assert await bob_meeting.submit_feedback(4)
        assert notifier.titles == ['No link yet', 'Not yet', 'Pick rating', 'Thanks', 'Saved']
        assert bob_meeting.my_feedback.rating == 4

        thread_id = await bob_meeting.open_chat()
        assert thread_id == await make_ctx(ALICE).messaging.get_or_create_thread(BOB)
    finally:
        await bob_meeting.unmount()
        await alice_meeting.unmount()


@pytest.mark.asyncio
async def test_cancel_from_meeting_reaches_the_partner(make_ctx, seed_slot, notifier):
    slot = seed_slot(ALICE, T0 + timedelta(days=1))
    await make_ctx(BOB).scheduling.book(slot['id'], BOB)
    bob_meeting = MeetingScreen(make_ctx(BOB), slot['id'])
    alice_meeting = MeetingScreen(make_ctx(ALICE), slot['id'])
    await bob_meeting.mount()
    await alice_meeting.mount()
    try:
        assert alice_meeting.can_cancel
        assert await alice_meeting.cancel_booking()
        await settle()
        assert bob_meeting.booking is None
        assert bob_meeting.partner_id is None
        assert not await bob_meeting.submit_feedback(5)
        assert await bob_meeting.open_chat() is None
        assert notifier.titles == ['Canceled', 'Not ready', 'No partner']
    finally:
        await bob_meeting.unmount()
        await alice_meeting.unmount()


@pytest.mark.asyncio
async def test_unknown_slot_reads_as_over(make_ctx):
    screen = MeetingScreen(make_ctx(BOB), 'missing')
    await screen.mount()
    assert screen.slot is None
    assert screen.state is SessionState.after
    assert screen.countdown == ''
    await screen.unmount()


class _BrokenReminders(RecordingNotifier):
    def remind(self, title, message):
        raise RuntimeError('dialog failed')


@pytest.mark.asyncio
async def test_meeting_header_follows_the_tick(make_ctx, seed_slot, clock, settings):
    slot = seed_slot(ALICE, T0 + timedelta(minutes=20))
    ctx = make_ctx(BOB)
    ctx.settings = settings.model_copy(update={'SESSION_TICK_SECONDS': 0.01})
    screen = MeetingScreen(ctx, slot['id'])
    await screen.mount()
    try:
        assert (screen.shown_state, screen.shown_countdown) == (SessionState.before, '00:20:00')
        clock.advance(minutes=25)
        assert await wait_for(lambda: screen.shown_state is SessionState.live)
        assert screen.shown_countdown == '00:55:00'
    finally:
        await screen.unmount()
    assert screen.clock._tasks == []


@pytest.mark.asyncio
async def test_failing_reminder_does_not_block_unmount(make_ctx, seed_slot, settings, caplog):
    slot = seed_slot(ALICE, T0 + timedelta(minutes=15, seconds=30))
    ctx = make_ctx(BOB, _BrokenReminders())
    ctx.settings = settings.model_copy(update={'REMINDER_TICK_SECONDS': 0.01})
    screen = MeetingScreen(ctx, slot['id'])
    await screen.mount()
    assert screen.subscriber.keys
    assert await wait_for(lambda: screen.clock.reminded)
    await screen.unmount()
    assert screen.subscriber.keys == []
    assert 'CLOCK_CALLBACK_FAILED' in caplog.text
