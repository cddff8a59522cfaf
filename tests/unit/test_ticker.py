import asyncio

import pytest

from aurora_sync.playback.ticker import Ticker


@pytest.mark.asyncio
async def test_ticker_runs_until_stopped() -> None:
    ticks = []

    async def on_tick() -> None:
        ticks.append(asyncio.get_running_loop().time())

    ticker = Ticker(0.01, on_tick)
    ticker.start()
    await asyncio.sleep(0.1)
    await ticker.stop()
    count = len(ticks)
    await asyncio.sleep(0.03)

    assert count >= 3
    assert len(ticks) == count
    assert not ticker.running


@pytest.mark.asyncio
async def test_failing_tick_does_not_kill_the_loop() -> None:
    calls = 0

    async def flaky() -> None:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("boom")

    ticker = Ticker(0.01, flaky)
    ticker.start()
    await asyncio.sleep(0.06)
    await ticker.stop()

    assert calls >= 2
    assert ticker.ticks == calls


@pytest.mark.asyncio
async def test_callback_may_stop_its_own_ticker() -> None:
    ticker: Ticker

    async def once() -> None:
        await ticker.stop()

    ticker = Ticker(0.01, once)
    ticker.start()
    await asyncio.sleep(0.05)

    assert ticker.ticks == 1
    assert not ticker.running


@pytest.mark.asyncio
async def test_cancel_does_not_wait() -> None:
    async def slow() -> None:
        await asyncio.sleep(10)

    ticker = Ticker(0.01, slow)
    ticker.start()
    await asyncio.sleep(0)
    ticker.cancel()
    await asyncio.sleep(0)

    assert not ticker.running


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        Ticker(0.0, lambda: None)  # type: ignore[arg-type, return-value]
