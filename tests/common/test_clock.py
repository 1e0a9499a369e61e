"""Unit tests for timers, sleeps and tickers."""

import asyncio
from unittest.mock import MagicMock

import pytest

from common.cancellation import CancellationToken
from common.clock import AsyncioClock, Timer


@pytest.mark.unit
class TestTimer:
    """Test cases for Timer."""

    def test_fire_runs_callback_once(self):
        callback = MagicMock()
        timer = Timer(callback, deadline=1.0)

        timer.fire()
        timer.fire()

        callback.assert_called_once()
        assert timer.active is False

    def test_cancelled_timer_never_fires(self):
        callback = MagicMock()
        timer = Timer(callback, deadline=1.0)

        assert timer.cancel() is True
        assert timer.cancel() is False
        timer.fire()

        callback.assert_not_called()

    def test_callback_error_is_contained(self):
        timer = Timer(MagicMock(side_effect=ValueError("bad")), deadline=0.0)

        timer.fire()

        assert timer.active is False


@pytest.mark.unit
@pytest.mark.asyncio
class TestManualClockSleep:
    """Test cases for Clock.sleep on the virtual clock."""

    async def test_sleep_completes_after_delay(self, manual_clock):
        task = asyncio.create_task(manual_clock.sleep(2.0))

        await manual_clock.advance(1.9)
        assert not task.done()

        await manual_clock.advance(0.2)
        assert task.result() is True

    async def test_sleep_woken_by_cancellation(self, manual_clock):
        """Cancelling the token ends the wait early and drops the timer."""
        token = CancellationToken()
        task = asyncio.create_task(manual_clock.sleep(5.0, token))
        await manual_clock.settle()

        token.cancel()
        await manual_clock.settle()

        assert task.result() is False
        assert manual_clock.pending_timers == []

    async def test_sleep_with_cancelled_token_returns_false(self, manual_clock):
        token = CancellationToken()
        token.cancel()

        assert await manual_clock.sleep(1.0, token) is False


@pytest.mark.unit
@pytest.mark.asyncio
class TestTicker:
    """Test cases for the serial ticker."""

    async def test_immediate_first_tick_then_interval(self, manual_clock):
        ticks = []
        ticker = manual_clock.every(3.0)

        async def consume():
            async for tick in ticker:
                ticks.append((tick, manual_clock.now()))
                if tick == 3:
                    ticker.stop()

        task = asyncio.create_task(consume())
        await manual_clock.advance(10.0)

        assert task.done()
        assert ticks == [(1, 0.0), (2, 3.0), (3, 6.0)]

    async def test_next_interval_starts_after_consumer_finishes(self, manual_clock):
        """A slow consumer shifts later ticks instead of overlapping them."""
        ticks = []
        ticker = manual_clock.every(3.0)

        async def consume():
            async for tick in ticker:
                ticks.append(manual_clock.now())
                await manual_clock.sleep(2.0)
                if tick == 2:
                    ticker.stop()

        task = asyncio.create_task(consume())
        await manual_clock.advance(20.0)

        assert task.done()
        assert ticks == [0.0, 5.0]

    async def test_token_cancellation_stops_ticker(self, manual_clock):
        token = CancellationToken()
        ticker = manual_clock.every(1.0, token=token)

        async def consume():
            async for _ in ticker:
                pass

        task = asyncio.create_task(consume())
        await manual_clock.advance(2.5)
        token.cancel()
        await manual_clock.settle()

        assert task.done()
        assert ticker.active is False
        assert ticker.ticks == 3
        assert manual_clock.pending_timers == []

    async def test_ticker_on_cancelled_token_yields_nothing(self, manual_clock):
        token = CancellationToken()
        token.cancel()
        ticker = manual_clock.every(1.0, token=token)

        ticks = [tick async for tick in ticker]

        assert ticks == []


@pytest.mark.unit
@pytest.mark.asyncio
class TestAsyncioClock:
    """Test cases for the event-loop backed clock."""

    async def test_after_fires_on_loop(self):
        clock = AsyncioClock()
        fired = asyncio.Event()

        clock.after(0.01, fired.set)

        await asyncio.wait_for(fired.wait(), timeout=1)

    async def test_cancelled_timer_does_not_fire(self):
        clock = AsyncioClock()
        callback = MagicMock()

        timer = clock.after(0.01, callback)
        timer.cancel()
        await asyncio.sleep(0.05)

        callback.assert_not_called()

    async def test_sleep_returns_true(self):
        clock = AsyncioClock()
        start = clock.now()

        assert await clock.sleep(0.01) is True
        assert clock.now() >= start
