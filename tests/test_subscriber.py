import pytest

from skillswap.application.sync.subscriber import ChangeFeedSubscriber, Interest
from skillswap.core.domain.models import ChangeEvent, ChangeType
from skillswap.core.errors import SubscriptionError

from support import settle, wait_for


def _msg(thread_id, id='1'):
    return ChangeEvent('messages', ChangeType.insert, new={'id': id, 'thread_id': thread_id})


@pytest.mark.asyncio
async def test_one_subscription_per_key(bus, settings):
    sub = ChangeFeedSubscriber(bus, settings)
    first, second = [], []
    await sub.open('messages-thread:t1', [Interest('messages')], first.append)
    await sub.open('messages-thread:t1', [Interest('messages')], second.append)
    assert bus.subscriber_count('messages') == 1
    await bus.publish(_msg('t1'))
    await settle()
    assert (len(first), len(second)) == (0, 1)
    await sub.close_all()
    assert bus.subscriber_count('messages') == 0


@pytest.mark.asyncio
async def test_no_handler_runs_after_close(bus, settings):
    sub = ChangeFeedSubscriber(bus, settings)
    got = []
    await sub.open('k', [Interest('messages')], got.append)
    await bus.publish(_msg('t1', '1'))
    await bus.publish(_msg('t1', '2'))
    # both events are queued but nothing has been delivered yet
    await sub.close('k')
    await sub.close('k')
    await settle()
    assert got == []
    assert sub.keys == []


@pytest.mark.asyncio
async def test_column_interest_filters_events(bus, settings):
    sub = ChangeFeedSubscriber(bus, settings)
    got = []
    await sub.open('k', [Interest('messages', ChangeType.insert, 'thread_id', 't1')], got.append)
    await bus.publish(_msg('t2', '1'))
    await bus.publish(ChangeEvent('messages', ChangeType.update, new={'id': '2', 'thread_id': 't1'}))
    await bus.publish(_msg('t1', '3'))
    await settle()
    assert [e.new['id'] for e in got] == ['3']
    await sub.close_all()


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_the_pump(bus, settings, caplog):
    sub = ChangeFeedSubscriber(bus, settings)
    got = []

    async def handler(event):
        if event.new['id'] == 'bad':
            raise RuntimeError('boom')
        got.append(event.new['id'])

    await sub.open('k', [Interest('messages')], handler)
    await bus.publish(_msg('t1', 'bad'))
    await bus.publish(_msg('t1', 'good'))
    await settle()
    assert got == ['good']
    assert 'FEED_HANDLER_FAILED' in caplog.text
    await sub.close_all()


@pytest.mark.asyncio
async def test_dropped_feed_reconnects_and_reconciles(bus, settings):
    sub = ChangeFeedSubscriber(bus, settings)
    got, reconciled = [], []
    await sub.open('k', [Interest('messages')], got.append, on_reconnect=lambda: reconciled.append(True))
    await bus.disconnect_all('socket closed')
    assert await wait_for(lambda: reconciled)
    assert sub.get('k').reconnects == 1
    await bus.publish(_msg('t1', 'after'))
    assert await wait_for(lambda: got)
    assert [e.new['id'] for e in got] == ['after']
    await sub.close_all()


class _FlakyBus:
    """Refuses the first ``failures`` subscribe calls after the initial one."""

    def __init__(self, inner, failures):
        self.inner = inner
        self.failures = failures
        self.calls = 0

    async def publish(self, event):
        await self.inner.publish(event)

    async def subscribe(self, tables):
        self.calls += 1
        if self.calls > 1 and self.failures:
            self.failures -= 1
            raise SubscriptionError('still down')
        return await self.inner.subscribe(tables)


@pytest.mark.asyncio
async def test_reconnect_retries_until_the_feed_is_back(bus, settings, caplog):
    flaky = _FlakyBus(bus, failures=2)
    sub = ChangeFeedSubscriber(flaky, settings)
    reconciled = []
    await sub.open('k', [Interest('messages')], lambda e: None, on_reconnect=lambda: reconciled.append(1))
    await bus.disconnect_all()
    assert await wait_for(lambda: reconciled)
    assert flaky.calls == 4
    assert caplog.text.count('FEED_RECONNECT_FAILED') == 2
    await sub.close_all()


def test_interest_needs_matching_table():
    event = ChangeEvent('bookings', ChangeType.delete, old={'slot_id': 's1'})
    assert Interest('bookings', ChangeType.delete, 'slot_id', 's1').matches(event)
    assert not Interest('bookings', ChangeType.insert).matches(event)
    assert not Interest('availability_slots').matches(event)
