"""Clock abstraction with cancellable timers, sleeps and tickers."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from common.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class Timer:
    """One-shot timer handle. Fires at most once; cancel() is idempotent."""

    def __init__(self, callback: Callable[[], None], deadline: float):
        self._callback = callback
        self.deadline = deadline
        self._active = True
        self._cancel_hook: Optional[Callable[[], None]] = None

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> bool:
        """
        Cancel the timer.

        Returns:
            True if the timer was pending and is now cancelled, False otherwise
        """
        if not self._active:
            return False
        self._active = False
        if self._cancel_hook is not None:
            self._cancel_hook()
        return True

    def fire(self) -> None:
        """Run the callback if the timer is still pending. Called by the clock."""
        if not self._active:
            return
        self._active = False
        try:
            self._callback()
        except Exception as e:
            logger.error(f"❌ Error in timer callback: {e}", exc_info=True)


class Ticker:
    """
    Serial periodic ticker used as an async iterator.

    The next interval starts when the consumer asks for the next tick, so a
    slow consumer never has two ticks outstanding. Iteration ends when the
    ticker is stopped or the linked token is cancelled; a stopped ticker
    holds no pending timer.
    """

    def __init__(
        self,
        clock: "Clock",
        interval: float,
        immediate: bool = True,
        token: Optional[CancellationToken] = None,
    ):
        self._clock = clock
        self.interval = interval
        self._immediate = immediate
        self._ticks = 0
        self._stop_token = CancellationToken("ticker")
        self._unlink: Optional[Callable[[], None]] = None
        if token is not None:
            self._unlink = token.add_callback(self.stop)

    @property
    def active(self) -> bool:
        return not self._stop_token.is_cancelled()

    @property
    def ticks(self) -> int:
        return self._ticks

    def stop(self) -> None:
        if self._stop_token.cancel("ticker stopped") and self._unlink is not None:
            self._unlink()

    def __aiter__(self) -> "Ticker":
        return self

    async def __anext__(self) -> int:
        if not self.active:
            raise StopAsyncIteration

        if self._ticks > 0 or not self._immediate:
            woke = await self._clock.sleep(self.interval, self._stop_token)
            if not woke or not self.active:
                raise StopAsyncIteration

        self._ticks += 1
        return self._ticks


class Clock(ABC):
    """Source of time and delayed callbacks."""

    @abstractmethod
    def now(self) -> float:
        """Monotonic time in seconds."""

    @abstractmethod
    def after(self, delay: float, callback: Callable[[], None]) -> Timer:
        """Schedule callback once after delay seconds."""

    async def sleep(
        self, delay: float, token: Optional[CancellationToken] = None
    ) -> bool:
        """
        Wait for delay seconds unless the token is cancelled first.

        Args:
            delay: Seconds to wait
            token: Optional token that ends the wait early

        Returns:
            True if the full delay elapsed, False if cancellation woke the wait
        """
        if token is not None and token.is_cancelled():
            return False

        future = asyncio.get_running_loop().create_future()

        def wake(result: bool) -> None:
            if not future.done():
                future.set_result(result)

        timer = self.after(delay, lambda: wake(True))
        unlink = token.add_callback(lambda: wake(False)) if token is not None else None
        try:
            return await future
        finally:
            timer.cancel()
            if unlink is not None:
                unlink()

    def every(
        self,
        interval: float,
        immediate: bool = True,
        token: Optional[CancellationToken] = None,
    ) -> Ticker:
        """
        Create a serial ticker.

        Args:
            interval: Seconds between ticks
            immediate: Yield the first tick without waiting
            token: Optional token that stops the ticker when cancelled

        Returns:
            Ticker usable with ``async for``
        """
        return Ticker(self, interval, immediate=immediate, token=token)


class AsyncioClock(Clock):
    """Clock backed by the running asyncio event loop."""

    def now(self) -> float:
        return asyncio.get_running_loop().time()

    def after(self, delay: float, callback: Callable[[], None]) -> Timer:
        loop = asyncio.get_running_loop()
        timer = Timer(callback, loop.time() + delay)
        handle = loop.call_later(delay, timer.fire)
        timer._cancel_hook = handle.cancel
        return timer
