from prometheus_client import REGISTRY

from skillswap.application.sync.projection import ProjectionCache
from skillswap.core.domain.models import ChangeType
from skillswap.core.domain.rows import SkillRow


def _skill(i, title):
    return SkillRow(id=str(i), title=title)


def _stale(kind):
    return REGISTRY.get_sample_value('skillswap_stale_results_total', {'kind': kind}) or 0.0


def test_replace_all_drops_absent_rows():
    cache = ProjectionCache('t')
    cache.replace_all(cache.begin_reload(), [_skill(1, 'A'), _skill(2, 'B')])
    cache.replace_all(cache.begin_reload(), [_skill(2, 'B2')])
    assert [s.title for s in cache] == ['B2']
    assert '1' not in cache
    assert cache.loaded


def test_patches_insert_update_delete():
    cache = ProjectionCache('t')
    cache.replace_all(cache.begin_reload(), [])
    cache.apply(ChangeType.insert, _skill(1, 'A'))
    cache.apply(ChangeType.update, _skill(1, 'A1'))
    assert cache.get('1').title == 'A1'
    assert cache.apply(ChangeType.delete, _skill(1, 'A1'))
    assert len(cache) == 0
    assert not cache.apply(ChangeType.delete, _skill(1, 'A1'))


def test_newer_reload_wins_over_older_one():
    cache = ProjectionCache('t')
    before = _stale('reload')
    older = cache.begin_reload()
    newer = cache.begin_reload()
    assert cache.replace_all(newer, [_skill(2, 'new')])
    # the slower, older reload completes last and must not clobber the newer result
    assert not cache.replace_all(older, [_skill(1, 'old')])
    assert [s.title for s in cache] == ['new']
    assert _stale('reload') == before + 1


def test_patch_issued_before_reload_is_discarded():
    cache = ProjectionCache('t')
    cache.replace_all(cache.begin_reload(), [])
    before = _stale('patch')
    token = cache.patch_token()
    cache.replace_all(cache.begin_reload(), [_skill(1, 'A')])
    assert not cache.apply(ChangeType.update, _skill(1, 'stale'), token)
    assert cache.get('1').title == 'A'
    assert _stale('patch') == before + 1
    assert cache.apply(ChangeType.update, _skill(1, 'fresh'), cache.patch_token())
