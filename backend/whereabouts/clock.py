"""
clock.py
~~~~~~~~
Time source for the scheduler.

The scheduler never calls ``datetime.now()`` or ``asyncio.sleep()``
directly; it goes through a :class:`Clock` so tests can drive slot timers
deterministically.
"""

from __future__ import annotations

import asyncio
import datetime as dt
from typing import Final, Protocol

UTC: Final = dt.timezone.utc

# Long sleeps are split so a suspended host or a wall-clock jump is
# noticed within this many seconds.
MAX_SLEEP_CHUNK_S: Final = 300.0


class Clock(Protocol):
    def now(self) -> dt.datetime:
        """Current instant, timezone-aware."""

    async def sleep_until(self, when: dt.datetime) -> None:
        """Return once ``now() >= when``."""


class SystemClock:
    """Wall clock backed by :func:`asyncio.sleep`."""

    def now(self) -> dt.datetime:
        return dt.datetime.now(UTC)

    async def sleep_until(self, when: dt.datetime) -> None:
        while True:
            remaining = (when - self.now()).total_seconds()
            if remaining <= 0:
                return
            await asyncio.sleep(min(remaining, MAX_SLEEP_CHUNK_S))


__all__ = ["Clock", "SystemClock"]
