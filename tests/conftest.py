"""
Shared fixtures.
ManualClock stands in for both asyncio.sleep and the wall clock so the
rate-limit countdown and the history TTL can be driven without waiting.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest


async def settle(rounds: int = 10):
    """Let pending tasks run until they block again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class ManualClock:
    def __init__(self, start: datetime | None = None):
        self.start = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.elapsed = 0.0
        self._sleepers: list[tuple[float, asyncio.Future]] = []

    def __call__(self) -> datetime:
        return self.start + timedelta(seconds=self.elapsed)

    async def sleep(self, seconds: float) -> None:
        fut = asyncio.get_running_loop().create_future()
        self._sleepers.append((self.elapsed + seconds, fut))
        await fut

    @property
    def pending(self) -> int:
        return sum(1 for _, fut in self._sleepers if not fut.done())

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking sleepers in order and letting them run."""
        target = self.elapsed + seconds
        while True:
            await settle()
            due = [s for s in self._sleepers if s[0] <= target]
            if not due:
                break
            wake_at, fut = min(due, key=lambda s: s[0])
            self._sleepers.remove((wake_at, fut))
            self.elapsed = wake_at
            if not fut.done():
                fut.set_result(None)
        self.elapsed = target
        await settle()


@pytest.fixture
def clock():
    return ManualClock()
