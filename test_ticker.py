"""
Tests for the minute ticker.
"""

from datetime import datetime

import pytest

from taskexec.ticker import TICK_JOB_ID, Ticker, minute_floor


async def _noop(now):
    pass


def test_minute_floor():
    assert minute_floor(datetime(2024, 1, 15, 10, 30, 59, 999999)) == datetime(2024, 1, 15, 10, 30)


@pytest.mark.asyncio
async def test_start_arms_one_minute_aligned_job():
    ticker = Ticker(_noop)
    try:
        ticker.start()
        ticker.start()

        jobs = ticker.scheduler.get_jobs()
        assert [job.id for job in jobs] == [TICK_JOB_ID]
        assert ticker.running

        next_tick = ticker.next_tick
        assert next_tick.second == 0
        assert next_tick.microsecond == 0
        assert next_tick > datetime.now(next_tick.tzinfo)
    finally:
        ticker.shutdown()


@pytest.mark.asyncio
async def test_stop_disarms_and_start_rearms():
    ticker = Ticker(_noop)
    try:
        ticker.start()
        ticker.stop()

        assert not ticker.running
        assert ticker.next_tick is None

        ticker.start()
        assert ticker.running
    finally:
        ticker.shutdown()

    assert not ticker.running
    assert ticker.scheduler is None


def test_stop_before_start_is_harmless():
    ticker = Ticker(_noop)
    ticker.stop()
    ticker.shutdown()
    assert not ticker.running


@pytest.mark.asyncio
async def test_tick_receives_minute_floored_time():
    seen = []

    async def on_tick(now):
        seen.append(now)

    ticker = Ticker(on_tick, clock=lambda: datetime(2024, 1, 15, 10, 30, 0, 4200))
    await ticker._fire()

    assert seen == [datetime(2024, 1, 15, 10, 30)]
