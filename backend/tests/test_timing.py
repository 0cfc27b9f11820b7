import asyncio

import pytest

from notesync.client.timing import Debounce, Throttle


def _recorder():
    calls = []

    async def cb():
        calls.append(asyncio.get_running_loop().time())

    return calls, cb


@pytest.mark.asyncio
async def test_throttle_runs_leading_and_one_trailing_call():
    calls, cb = _recorder()
    t = Throttle(0.05, cb)

    for _ in range(5):
        t.trigger()
    await asyncio.sleep(0)
    assert len(calls) == 1
    assert t.trailing_pending

    await asyncio.sleep(0.08)
    assert len(calls) == 2

    # quiet window after the trailing run: nothing more
    await asyncio.sleep(0.08)
    assert len(calls) == 2
    assert not t.window_open


@pytest.mark.asyncio
async def test_throttle_single_trigger_has_no_trailing_call():
    calls, cb = _recorder()
    t = Throttle(0.03, cb)

    t.trigger()
    await asyncio.sleep(0.08)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_throttle_flush_runs_trailing_call_now():
    calls, cb = _recorder()
    t = Throttle(10, cb)

    t.trigger()
    t.trigger()
    await t.flush()
    assert len(calls) == 2
    assert not t.trailing_pending
    t.cancel()


@pytest.mark.asyncio
async def test_throttle_cancel_drops_trailing_call():
    calls, cb = _recorder()
    t = Throttle(0.03, cb)

    t.trigger()
    t.trigger()
    t.cancel()
    await asyncio.sleep(0.06)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_debounce_fires_once_after_quiet_period():
    calls, cb = _recorder()
    d = Debounce(0.05, cb)

    for _ in range(3):
        d.trigger()
        await asyncio.sleep(0.02)
    assert calls == []
    assert d.pending

    await asyncio.sleep(0.08)
    assert len(calls) == 1
    assert not d.pending


@pytest.mark.asyncio
async def test_debounce_cancel():
    calls, cb = _recorder()
    d = Debounce(0.03, cb)

    d.trigger()
    d.cancel()
    await asyncio.sleep(0.06)
    assert calls == []


@pytest.mark.asyncio
async def test_failing_callback_does_not_break_the_timer():
    calls = []

    async def flaky():
        calls.append(1)
        raise RuntimeError("boom")

    t = Throttle(0.02, flaky)
    t.trigger()
    await t.drain()
    await asyncio.sleep(0.03)
    t.trigger()
    await t.drain()
    assert len(calls) == 2
