from datetime import datetime, timedelta, timezone

import pytest

from skillswap.core.domain.rows import MatchRow
from skillswap.core.domain.values import SkillTitle
from skillswap.core.errors import QueryError
from skillswap.presentation.screens.matches import MatchesScreen, match_title, overlap_text, rating_text
from skillswap.presentation.screens.profile import ProfileScreen, profile_rating_text
from skillswap.presentation.screens.skills import SkillsScreen

from support import ALICE, BOB, CAROL, T0, settle


@pytest.mark.asyncio
async def test_skill_titles_deduplicate_and_teaching_needs_proof(make_ctx, notifier):
    alice = SkillsScreen(make_ctx(ALICE))
    bob = SkillsScreen(make_ctx(BOB))
    await alice.mount()
    await bob.mount()
    try:
        guitar = await alice.add_skill('Guitar')
        again = await alice.add_skill('  guitar ')
        assert again.id == guitar.id
        await settle()
        assert [s.title for s in bob.selections] == ['Guitar']

        assert not await alice.toggle_offer(guitar.id)
        assert not alice.selection(guitar.id).is_offer
        assert await alice.toggle_offer(guitar.id, proof_path='proofs/alice/guitar.pdf')
        sel = alice.selection(guitar.id)
        assert sel.is_offer and sel.is_verified and not sel.needs_proof

        # once verified, later toggles need no new proof
        assert await alice.toggle_offer(guitar.id)
        assert await alice.toggle_offer(guitar.id)
        assert await alice.toggle_want(guitar.id)
        assert alice.selection(guitar.id).is_want
        assert notifier.titles == [
            'Success', 'Already listed', 'Proof required',
            'Success', 'Success',
        ]
    finally:
        await alice.unmount()
        await bob.unmount()


@pytest.mark.asyncio
async def test_rename_clash_and_delete(make_ctx, notifier):
    ctx = make_ctx(ALICE)
    screen = SkillsScreen(ctx)
    await screen.mount()
    try:
        guitar = await screen.add_skill('Guitar')
        piano = await screen.add_skill('Piano')
        notifier.alerts.clear()
        assert not await screen.rename_skill(piano.id, 'GUITAR')
        assert notifier.titles == ['Invalid input']
        assert await screen.rename_skill(piano.id, 'Grand Piano')
        assert screen.selection(piano.id).title == 'Grand Piano'

        await ctx.catalog.set_want(ALICE, guitar.id, True)
        await settle()
        assert screen.selection(guitar.id).is_want
        assert await screen.delete_skill(guitar.id)
        assert screen.selection(guitar.id) is None
        assert await ctx.catalog.wants_of(ALICE) == []
    finally:
        await screen.unmount()


@pytest.mark.asyncio
async def test_blank_skill_title_rejected(make_ctx, notifier):
    screen = SkillsScreen(make_ctx(ALICE))
    await screen.mount()
    assert await screen.add_skill('   ') is None
    assert notifier.titles == ['Invalid input']
    await screen.unmount()


@pytest.mark.asyncio
async def test_profile_screen_tracks_skills_and_ratings(make_ctx, seed_slot, notifier):
    ctx = make_ctx(ALICE)
    screen = ProfileScreen(ctx)
    await screen.mount()
    try:
        assert screen.profile.display_name == 'Alice'
        assert screen.rating_text == 'No ratings yet'

        spanish, _ = await ctx.catalog.get_or_create_skill(SkillTitle('spanish'))
        await ctx.catalog.set_want(ALICE, spanish.id, True)
        await settle()
        assert screen.wants == ['spanish']

        slot = seed_slot(ALICE, T0 - timedelta(hours=2))
        bob = make_ctx(BOB)
        await bob.scheduling.book(slot['id'], BOB)
        await bob.scheduling.add_feedback(slot['id'], BOB, ALICE, 4, None)
        await settle()
        assert screen.rating_text == '4.0 / 5 (1)'

        assert await screen.save_profile('  Alice A. ', '')
        assert (screen.profile.display_name, screen.profile.bio) == ('Alice A.', None)
        assert notifier.titles == ['Success']
    finally:
        await screen.unmount()


@pytest.mark.asyncio
async def test_rating_failure_keeps_previous_numbers(make_ctx, backend):
    screen = ProfileScreen(make_ctx(ALICE))
    await screen.mount()
    screen.avg_rating, screen.rating_count = 3.0, 2
    backend.fail_next('select:session_feedback', QueryError('timeout'))
    await screen.load_ratings()
    assert screen.rating_text == '3.0 / 5 (2)'
    await screen.unmount()


def test_rating_texts():
    assert profile_rating_text(None, 0) == 'No ratings yet'
    assert profile_rating_text(4.25, 4) == '4.2 / 5 (4)'
    assert rating_text(None, 0) == 'No ratings yet'
    assert rating_text(4.5, 2) == '4.5 (2)'


def test_match_card_texts():
    row = MatchRow(other_id=CAROL, other_name='  ', other_email=None,
                   overlap_weekday=0, overlap_start_min=9 * 60, overlap_end_min=10 * 60 + 30)
    assert match_title(row) == CAROL
    assert overlap_text(row) == 'First overlap: Sun 09:00-10:30'
    named = MatchRow(other_id=BOB, other_name='Bob', other_email='bob@example.com')
    assert match_title(named) == 'bob@example.com'
    assert overlap_text(named) == 'No overlapping time yet'
    dated = MatchRow(
        other_id=BOB,
        overlap_start_at=datetime(2025, 11, 4, 11, tzinfo=timezone.utc),
        overlap_end_at=datetime(2025, 11, 4, 12, tzinfo=timezone.utc),
    )
    assert overlap_text(dated) == 'First overlap: Tue 2025-11-04 11:00 - 12:00 UTC'


@pytest.mark.asyncio
async def test_matches_screen_builds_cards(make_ctx, seed_slot):
    alice, bob = make_ctx(ALICE), make_ctx(BOB)
    guitar, _ = await alice.catalog.get_or_create_skill(SkillTitle('Guitar'))
    spanish, _ = await alice.catalog.get_or_create_skill(SkillTitle('Spanish'))
    await alice.catalog.set_offer(ALICE, guitar.id, True)
    await alice.catalog.set_want(ALICE, spanish.id, True)
    await bob.catalog.set_offer(BOB, spanish.id, True)
    await bob.catalog.set_want(BOB, guitar.id, True)

    screen = MatchesScreen(alice)
    await screen.mount()
    [card] = screen.cards
    assert (card.title, card.teach, card.learn) == ('bob@example.com', 'Guitar', 'Spanish')
    assert card.overlap == 'No overlapping time yet'
    assert card.rating == 'No ratings yet'
    thread_id = await screen.ensure_chat(card.other_id)
    assert thread_id == await bob.messaging.get_or_create_thread(ALICE)
    await screen.unmount()


@pytest.mark.asyncio
async def test_inactive_screen_stays_silent(make_ctx, notifier):
    screen = MatchesScreen(make_ctx(ALICE))
    await screen.mount()
    await screen.unmount()
    assert await screen.ensure_chat(ALICE) is None
    screen.notify('Hello', 'nobody is looking')
    assert notifier.alerts == []
