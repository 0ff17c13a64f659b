"""
Shared fixtures: a controllable clock and a sleep that only records.

Async code under test is driven with asyncio.run() from plain test
functions, so none of these fixtures need an event loop.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest


class FakeClock:
    """Callable clock; `advance()` moves time forward."""

    def __init__(self, start: datetime = datetime(2024, 7, 1, 5, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeSleep:
    """Awaitable stand-in for asyncio.sleep that returns immediately."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def fake_sleep() -> FakeSleep:
    return FakeSleep()
