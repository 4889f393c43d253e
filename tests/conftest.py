"""
tests/conftest.py
~~~~~~~~~~~~~~~~~
Global pytest fixtures and deterministic fakes.

* ``isolate_persist_dir`` points ``PERSIST_DIR`` at a per-test temporary
  directory so nothing is written under ``local_data/``.
* :class:`FakeClock` drives slot timers without real sleeping.
* :class:`FakePlatform` / :class:`FakeGeocoder` stand in for the device
  positioning capability and the reverse geocoders.
"""

from __future__ import annotations

import asyncio
import datetime as dt
from pathlib import Path
from typing import Any, Callable

import pytest
from dateutil import tz

from whereabouts.errors import GeocodingExhausted
from whereabouts.geocoding_service import GeocodingResolver
from whereabouts.models import AccuracyTier, CityInfo, Coordinates
from whereabouts.position_source import Fix, PositionSource
from whereabouts.scheduler import UpdateScheduler
from whereabouts.snapshot_cache import SnapshotCache
from whereabouts.storage import MemoryStore
from whereabouts.update_history import UpdateHistory

pytest_plugins = ["pytest_asyncio"]

UTC = tz.UTC

# Monday morning, before the first default slot.
START = dt.datetime(2025, 6, 2, 7, 0, tzinfo=UTC)

BERLIN = CityInfo(
    city="Berlin",
    country="Germany",
    accuracy=AccuracyTier.HIGH,
    full_address="Unter den Linden 1, 10117 Berlin, Germany",
)


async def settle(rounds: int = 50) -> None:
    """Let every ready task run until the loop goes quiet."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    """Manually advanced clock; ``sleep_until`` wakes only on ``advance``."""

    def __init__(self, start: dt.datetime = START) -> None:
        self._now = start
        self._sleepers: list[tuple[dt.datetime, asyncio.Future]] = []

    def now(self) -> dt.datetime:
        return self._now

    def set(self, when: dt.datetime) -> None:
        self._now = when

    async def sleep_until(self, when: dt.datetime) -> None:
        if when <= self._now:
            return
        fut = asyncio.get_running_loop().create_future()
        entry = (when, fut)
        self._sleepers.append(entry)
        try:
            await fut
        finally:
            if entry in self._sleepers:
                self._sleepers.remove(entry)

    @property
    def pending(self) -> list[dt.datetime]:
        return sorted(when for when, fut in self._sleepers if not fut.done())

    async def advance(self, delta: dt.timedelta) -> None:
        """Move time forward, waking sleepers in chronological order."""
        target = self._now + delta
        while True:
            due = [s for s in self._sleepers if s[0] <= target and not s[1].done()]
            if not due:
                break
            when, fut = min(due, key=lambda s: s[0])
            self._now = max(self._now, when)
            fut.set_result(None)
            await settle()
        self._now = target
        await settle()


class FakePlatform:
    """Positioning capability double with an optional gate to hold a fix."""

    def __init__(
        self,
        latitude: float = 52.5163,
        longitude: float = 13.3777,
        error: Exception | None = None,
    ) -> None:
        self.latitude = latitude
        self.longitude = longitude
        self.error = error
        self.calls: list[tuple[str, float, float]] = []
        self.gate: asyncio.Event | None = None

    async def request_fix(
        self, accuracy_hint: str, timeout: float, max_cache_age: float
    ) -> Fix:
        self.calls.append((accuracy_hint, timeout, max_cache_age))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return Fix(self.latitude, self.longitude, 20.0, dt.datetime.now(UTC))


class FakeGeocoder:
    def __init__(
        self,
        result: CityInfo | None = BERLIN,
        error: Exception | None = None,
        name: str = "fake",
    ) -> None:
        self.result = result
        self.error = error
        self.name = name
        self.calls: list[Coordinates] = []

    async def reverse(self, coords: Coordinates) -> CityInfo:
        self.calls.append(coords)
        if self.error is not None:
            raise self.error
        if self.result is None:
            raise GeocodingExhausted("no result")
        return self.result


@pytest.fixture(autouse=True)
def isolate_persist_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Redirect ``PERSIST_DIR`` to *tmp_path* for every test."""
    persist = tmp_path / "persist"
    persist.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("PERSIST_DIR", str(persist))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def make_scheduler(
    clock: FakeClock, platform: FakePlatform, store: MemoryStore
) -> Callable[..., UpdateScheduler]:
    """Factory for a scheduler wired to fakes; keyword overrides allowed."""

    def _make(**overrides: Any) -> UpdateScheduler:
        geocoder = overrides.pop(
            "geocoder", GeocodingResolver(FakeGeocoder(), FakeGeocoder(name="osm"))
        )
        source_platform = overrides.pop("platform", platform)
        params: dict[str, Any] = {
            "clock": clock,
            "tzinfo": UTC,
            "initial_update": False,
        }
        params.update(overrides)
        return UpdateScheduler(
            PositionSource(source_platform),
            geocoder,
            SnapshotCache(store),
            UpdateHistory(store),
            **params,
        )

    return _make
