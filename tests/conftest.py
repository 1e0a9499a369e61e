"""Pytest configuration and shared fixtures."""

import asyncio
import sys
from pathlib import Path
from typing import Callable, List
from unittest.mock import AsyncMock

import pytest

# Add src directory to Python path for imports
project_root = Path(__file__).parent.parent
src_path = project_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from common.clock import Clock, Timer
from common.config import PollingBudget
from common.schemas import JobStatusResult, ProviderJobStatus
from providers.mock import MockProviderClient


class ManualClock(Clock):
    """
    Virtual clock for deterministic timing tests.

    Time only moves in advance(); due timers fire in deadline order and the
    event loop is given a chance to run between them.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._timers: List[Timer] = []

    def now(self) -> float:
        return self._now

    def after(self, delay: float, callback: Callable[[], None]) -> Timer:
        timer = Timer(callback, self._now + max(delay, 0.0))
        self._timers.append(timer)
        return timer

    @property
    def pending_timers(self) -> List[Timer]:
        return [timer for timer in self._timers if timer.active]

    async def settle(self, iterations: int = 100) -> None:
        """Let ready tasks run without moving time."""
        for _ in range(iterations):
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        """Move time forward, firing every timer that falls due on the way."""
        target = self._now + seconds
        await self.settle()
        while True:
            due = [t for t in self._timers if t.active and t.deadline <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.deadline)
            self._now = max(self._now, timer.deadline)
            self._timers.remove(timer)
            timer.fire()
            await self.settle()
        self._now = target
        self._timers = [t for t in self._timers if t.active]


def status(value: ProviderJobStatus, **kwargs) -> JobStatusResult:
    """Build a provider status response."""
    return JobStatusResult(status=value.value, **kwargs)


@pytest.fixture
def manual_clock():
    """Virtual clock starting at t=0."""
    return ManualClock()


@pytest.fixture
def image_budget():
    """Default image polling budget."""
    return PollingBudget(interval_seconds=3.0, max_attempts=30, max_not_found=12)


@pytest.fixture
def video_budget():
    """Default video polling budget."""
    return PollingBudget(interval_seconds=5.0, max_attempts=60, max_not_found=15)


@pytest.fixture
def mock_provider(manual_clock):
    """Scripted in-memory provider client."""
    return MockProviderClient(clock=manual_clock)


@pytest.fixture
def mock_status_client():
    """Provider client whose check_job_status is an AsyncMock."""
    client = AsyncMock()
    client.check_job_status = AsyncMock(
        return_value=status(ProviderJobStatus.IN_PROGRESS)
    )
    return client

