from datetime import datetime, timezone

import pytest

from skillswap.core.domain.rows import MatchRow, MessageRow, SlotRow, parse_row, parse_rows
from skillswap.core.domain.values import Rating, SkillTitle, TimeRange
from skillswap.core.errors import ValidationError
from skillswap.core.ports.backend import Filter, Op, Query, eq


def test_message_row_coerces_ids_and_instants():
    row = MessageRow.model_validate({
        'id': 42, 'thread_id': 7, 'sender_id': 'u1', 'content': 'hi',
        'created_at': '2025-11-03T10:00:00', 'read_at': None, 'extra': 'ignored',
    })
    assert row.id == '42'
    assert row.thread_id == '7'
    assert row.created_at == datetime(2025, 11, 3, 10, 0, tzinfo=timezone.utc)
    assert row.is_incoming_unread('someone-else')
    assert not row.is_incoming_unread('u1')


def test_parse_rows_drops_malformed(caplog):
    raw = [
        {'id': 1, 'user_id': 'a', 'start_at': '2025-11-03T10:00:00+00:00', 'end_at': '2025-11-03T11:00:00+00:00'},
        {'id': 2, 'user_id': 'a', 'start_at': '2025-11-03T11:00:00+00:00', 'end_at': '2025-11-03T10:00:00+00:00'},
        {'id': 3},
    ]
    rows = parse_rows(SlotRow, raw, source='test')
    assert [r.id for r in rows] == ['1']
    assert 'ROW_REJECTED' in caplog.text
    assert parse_row(SlotRow, None) is None


def test_match_row_accepts_first_overlap_names():
    row = MatchRow.model_validate({
        'other_id': 'b', 'offer_to_them': None, 'want_from_them': ['Guitar'],
        'first_overlap_weekday': 1, 'first_overlap_start_min': 600, 'first_overlap_end_min': 660,
    })
    assert row.offer_to_them == []
    assert (row.overlap_weekday, row.overlap_start_min, row.overlap_end_min) == (1, 600, 660)


def test_value_objects_validate():
    assert SkillTitle('  Jazz   Guitar ').value == 'Jazz Guitar'
    assert SkillTitle('Guitar').key == SkillTitle('gUITAR').key
    with pytest.raises(ValidationError):
        SkillTitle('   ')
    with pytest.raises(ValidationError):
        Rating(0)
    with pytest.raises(ValidationError):
        Rating(True)
    start = datetime(2025, 1, 1, 10, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        TimeRange(start, start)
    with pytest.raises(ValidationError):
        TimeRange(start.replace(tzinfo=None), start.replace(hour=11, tzinfo=None))


def test_filters_match_rows():
    row = {'id': 5, 'title': 'Guitar', 'end_at': '2025-11-03T11:00:00+00:00', 'read_at': None}
    assert eq('id', '5').matches(row)
    assert Filter('title', Op.ilike, 'gui%').matches(row)
    assert not Filter('title', Op.ilike, 'gui').matches(row)
    assert Filter('end_at', Op.gt, datetime(2025, 11, 3, 10, tzinfo=timezone.utc)).matches(row)
    assert Filter('read_at', Op.is_, None).matches(row)
    assert Filter('id', Op.in_, [1, 5]).matches(row)
    assert not Filter('missing', Op.eq, 'x').matches(row)


def test_query_or_group_and_filters():
    q = Query('threads').or_(eq('user_a', 'u'), eq('user_b', 'u')).neq('id', '9')
    assert q.matches({'id': '1', 'user_a': 'x', 'user_b': 'u'})
    assert not q.matches({'id': '9', 'user_a': 'u', 'user_b': 'x'})
    assert not q.matches({'id': '2', 'user_a': 'x', 'user_b': 'y'})
