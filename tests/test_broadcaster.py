import asyncio
import gc

import pytest

from seqcast.broadcaster import Broadcaster, Delivery, LagPolicy
from seqcast.channel import Lagged
from seqcast.settings import Settings

async def next_value(sub, timeout=1.0):
    return await asyncio.wait_for(sub.__anext__(), timeout)

async def drain(sub):
    out = []
    while sub.pending:
        out.append(await next_value(sub))
    return out

def test_push_without_subscribers():
    bc = Broadcaster.create()
    assert [bc.push(), bc.push(), bc.push()] == [True, True, True]
    # 1, 2, 3 were taken; the counter continues at 4
    assert bc.state.advance() == 4

def test_subscriber_sees_pushes_in_order():
    async def scenario():
        bc = Broadcaster.create()
        s1 = bc.subscribe()
        bc.push()
        first = await next_value(s1)
        bc.push()
        second = await next_value(s1)
        return first, second

    assert asyncio.run(scenario()) == (1, 2)

def test_late_subscriber_gets_no_replay():
    async def scenario():
        bc = Broadcaster.create()
        s1 = bc.subscribe()
        bc.push()
        s2 = bc.subscribe()
        bc.push()
        return await drain(s1), await drain(s2)

    assert asyncio.run(scenario()) == ([1, 2], [2])

def test_subscriber_opened_after_five_pushes():
    async def scenario():
        bc = Broadcaster.create()
        for _ in range(5):
            bc.push()
        sub = bc.subscribe()
        bc.push()
        return await drain(sub)

    assert asyncio.run(scenario()) == [6]

def test_slow_subscriber_lags_and_skips():
    async def scenario():
        bc = Broadcaster.create(capacity=32)
        s1 = bc.subscribe()
        results = [bc.push() for _ in range(40)]
        seen = await drain(s1)
        return results, seen, s1.missed

    results, seen, missed = asyncio.run(scenario())
    assert all(results) and len(results) == 40
    assert len(seen) < 40
    assert seen == list(range(9, 41))
    assert missed == 8

def test_raise_policy_surfaces_lag():
    async def scenario():
        bc = Broadcaster.create(capacity=4, lag_policy="raise")
        sub = bc.subscribe()
        for _ in range(6):
            bc.push()
        with pytest.raises(Lagged) as exc:
            await next_value(sub)
        rest = await drain(sub)
        return exc.value.missed, rest

    assert asyncio.run(scenario()) == (2, [3, 4, 5, 6])

def test_events_exposes_lag_records():
    async def scenario():
        bc = Broadcaster.create(capacity=2)
        sub = bc.subscribe()
        for _ in range(4):
            bc.push()
        bc.close()
        return [d async for d in sub.events()]

    assert asyncio.run(scenario()) == [Delivery.lag(2), Delivery.of(3), Delivery.of(4)]

def test_slow_subscriber_does_not_hold_back_others():
    async def scenario():
        bc = Broadcaster.create(capacity=8)
        stalled = bc.subscribe()
        live = bc.subscribe()
        got = []
        for _ in range(100):
            assert bc.push() is True
            got.append(await next_value(live))
        return got, stalled.pending

    got, stalled_pending = asyncio.run(scenario())
    assert got == list(range(1, 101))
    assert stalled_pending == 8

def test_concurrent_subscribers_receive_independently():
    async def consume(sub, n, delay):
        out = []
        async for v in sub:
            out.append(v)
            if len(out) == n:
                break
            await asyncio.sleep(delay)
        return out

    async def producer(bc, n):
        for _ in range(n):
            bc.push()
            await asyncio.sleep(0.001)

    async def scenario():
        bc = Broadcaster.create(capacity=32)
        fast, slow = bc.subscribe(), bc.subscribe()
        a, b, _ = await asyncio.gather(consume(fast, 20, 0), consume(slow, 20, 0.002), producer(bc, 20))
        return a, b

    a, b = asyncio.run(scenario())
    assert a == b == list(range(1, 21))

def test_close_ends_iteration_after_drain():
    async def scenario():
        bc = Broadcaster.create()
        sub = bc.subscribe()
        bc.push()
        bc.push()
        bc.close()
        values = [v async for v in sub]
        return values, sub.closed

    assert asyncio.run(scenario()) == ([1, 2], True)

def test_closing_subscription_releases_slot():
    async def scenario():
        bc = Broadcaster.create()
        async with bc.subscribe() as sub:
            assert bc.subscriber_count == 1
        assert sub.closed
        sub.close()
        return bc.subscriber_count

    assert asyncio.run(scenario()) == 0

def test_abandoned_subscription_is_released():
    bc = Broadcaster.create()
    sub = bc.subscribe()
    assert bc.subscriber_count == 1
    del sub
    gc.collect()
    assert bc.subscriber_count == 0

def test_cancelled_consumer_stops_receiving():
    async def scenario():
        bc = Broadcaster.create()
        sub = bc.subscribe()

        async def reader():
            try:
                async for _ in sub:
                    pass
            finally:
                await sub.aclose()

        task = asyncio.create_task(reader())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return bc.subscriber_count, bc.push()

    assert asyncio.run(scenario()) == (0, True)

def test_from_settings_and_validation():
    bc = Broadcaster.from_settings(Settings(CAPACITY=4, INITIAL_VALUE=10, LAG_POLICY="raise"))
    assert bc.state.capacity == 4
    assert bc.state.initial_value == 10
    assert bc.lag_policy is LagPolicy.RAISE
    with pytest.raises(ValueError):
        Broadcaster.create(lag_policy="replay")
    with pytest.raises(ValueError):
        Broadcaster.create(capacity=0)

def test_push_after_close_is_not_counted():
    from prometheus_client import REGISTRY

    bc = Broadcaster.create(initial_value=500)
    bc.push()
    pushes = REGISTRY.get_sample_value("seqcast_pushes_total")
    assert REGISTRY.get_sample_value("seqcast_last_value") == 500
    bc.close()
    assert bc.push() is True
    assert REGISTRY.get_sample_value("seqcast_pushes_total") == pushes
    assert REGISTRY.get_sample_value("seqcast_last_value") == 500

def test_settings_reject_unknown_lag_policy():
    from pydantic import ValidationError

    with pytest.raises(ValidationError):
        Settings(LAG_POLICY="replay")
