"""scheduler.py
~~~~~~~~~~~~
Keep the user's city-level location fresh on a fixed daily schedule and on
demand.

Lifecycle
---------
* ``start()`` arms one self-renewing timer per configured slot (default
  08:00 / 14:00 / 20:00 in the scheduler's time zone) and, unless
  disabled, runs one "Initial" update in the background.
* Each timer sleeps until its next wall-clock occurrence, runs the
  pipeline, then re-arms for the following occurrence, so pipeline
  duration never shifts the schedule.
* ``stop()`` cancels every timer immediately. A pipeline that is already
  running finishes and delivers its outcome once; its slot is not re-armed.

Pipeline
--------
1. Live fix (``scheduled`` mode) → reverse geocode → cache + history →
   deliver a ``live`` snapshot.
2. Live fix failed → cached snapshot younger than the freshness window is
   served as ``cached`` with its timestamp re-stamped to *now*.
3. Otherwise a :class:`NoFreshFallback` is recorded and delivered.

Only one pipeline runs at a time; a slot fire or ``force_update()`` that
arrives while one is in flight shares its outcome.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Union

from dateutil import tz

from .clock import Clock, SystemClock
from .constants import DEFAULT_SLOTS, INITIAL_UPDATE
from .errors import LocationUpdateError, NoFreshFallback, PositionError
from .geocoding_service import GeocodingResolver
from .models import (
    LocationSnapshot,
    NextUpdate,
    ScheduleSlot,
    SourceKind,
    UpdateRecord,
    UpdateStats,
)
from .position_source import PositionMode, PositionSource
from .snapshot_cache import SnapshotCache
from .update_history import UpdateHistory

LOG = logging.getLogger("scheduler")

PipelineOutcome = Union[LocationSnapshot, LocationUpdateError]
UpdateCallback = Callable[[LocationSnapshot], Any]
ErrorCallback = Callable[[str], Any]


class SchedulerState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    RESOLVING = "resolving"


class SlotState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    FIRED = "fired"


@dataclass
class SlotTimer:
    """Per-slot state machine: idle → armed → fired → armed → …"""

    slot: ScheduleSlot
    state: SlotState = SlotState.IDLE
    next_fire: Optional[dt.datetime] = None
    fire_count: int = 0
    task: Optional["asyncio.Task[None]"] = None

    def arm(self, when: dt.datetime) -> None:
        self.state = SlotState.ARMED
        self.next_fire = when

    def fire(self) -> None:
        self.state = SlotState.FIRED
        self.fire_count += 1

    def disarm(self) -> None:
        if self.task is not None:
            self.task.cancel()
        self.task = None
        self.state = SlotState.IDLE
        self.next_fire = None


def next_fire_time(slot: ScheduleSlot, now: dt.datetime, tzinfo: dt.tzinfo) -> dt.datetime:
    """
    Next occurrence of *slot* strictly after *now*, in *tzinfo*.

    Today's occurrence is used unless it is at or before *now*, in which
    case tomorrow's is returned. Wall times that fall in a DST gap are
    shifted forward.
    """
    local_now = now.astimezone(tzinfo)
    candidate = tz.resolve_imaginary(
        local_now.replace(hour=slot.hour, minute=slot.minute, second=0, microsecond=0)
    )
    if candidate <= local_now:
        tomorrow = local_now.date() + dt.timedelta(days=1)
        candidate = tz.resolve_imaginary(
            dt.datetime(
                tomorrow.year, tomorrow.month, tomorrow.day, slot.hour, slot.minute,
                tzinfo=tzinfo,
            )
        )
    return candidate


_CLOSED = object()

# Events kept for a subscriber that is not reading.
SUBSCRIPTION_BUFFER = 32


class Subscription:
    """
    Ordered stream of pipeline outcomes (snapshots or update errors).

    >>> with scheduler.subscribe() as updates:
    ...     async for event in updates:
    ...         ...
    """

    def __init__(self, owner: "UpdateScheduler", maxsize: int = SUBSCRIPTION_BUFFER) -> None:
        self._owner = owner
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0

    def _offer(self, item: Any) -> None:
        # A full buffer loses its oldest event.
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(item)

    def _push(self, event: PipelineOutcome) -> None:
        if not self.closed:
            self._offer(event)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._owner._subscribers.discard(self)
        self._offer(_CLOSED)

    async def receive(self) -> PipelineOutcome:
        """Next outcome; raises :class:`StopAsyncIteration` once closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> PipelineOutcome:
        return await self.receive()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.close()


class UpdateScheduler:
    def __init__(
        self,
        position: PositionSource,
        geocoder: GeocodingResolver,
        cache: SnapshotCache,
        history: UpdateHistory,
        *,
        slots: Iterable[ScheduleSlot] | None = None,
        clock: Clock | None = None,
        tzinfo: dt.tzinfo | None = None,
        initial_update: bool = INITIAL_UPDATE,
    ) -> None:
        self.position = position
        self.geocoder = geocoder
        self.cache = cache
        self.history = history
        self.slots: tuple[ScheduleSlot, ...] = tuple(slots or DEFAULT_SLOTS)
        self.clock: Clock = clock or SystemClock()
        self.tzinfo: dt.tzinfo = tzinfo or tz.tzlocal()
        self.initial_update = initial_update

        self.timers: list[SlotTimer] = [SlotTimer(slot) for slot in self.slots]
        self._active = False
        self._inflight: Optional["asyncio.Task[PipelineOutcome]"] = None
        self._initial_task: Optional["asyncio.Task[None]"] = None
        self._on_update: UpdateCallback | None = None
        self._on_error: ErrorCallback | None = None
        self._subscribers: set[Subscription] = set()

    # ── Lifecycle ────────────────────────────────────────────────────────
    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def state(self) -> SchedulerState:
        if not self._active:
            return SchedulerState.IDLE
        if self._inflight is not None and not self._inflight.done():
            return SchedulerState.RESOLVING
        return SchedulerState.ACTIVE

    def start(
        self,
        on_update: UpdateCallback | None = None,
        on_error: ErrorCallback | None = None,
        *,
        initial_update: bool | None = None,
    ) -> None:
        """Arm every slot timer. Must be called from a running event loop."""
        if self._active:
            LOG.info("[scheduler] already active")
            return

        loop = asyncio.get_running_loop()
        self._on_update = on_update
        self._on_error = on_error
        self._active = True
        LOG.info("[scheduler] starting automatic location updates (%d slots)", len(self.timers))

        for timer in self.timers:
            timer.task = loop.create_task(
                self._run_slot(timer), name=f"location-slot-{timer.slot.label}"
            )

        run_initial = self.initial_update if initial_update is None else initial_update
        if run_initial:
            self._initial_task = loop.create_task(self._fire_once("Initial"))

    def stop(self) -> None:
        """Cancel all armed timers; an in-flight pipeline still delivers."""
        if not self._active:
            return
        LOG.info("[scheduler] stopping automatic location updates")
        for timer in self.timers:
            timer.disarm()
        if self._initial_task is not None:
            self._initial_task.cancel()
            self._initial_task = None
        self._active = False

    # ── Slot timers ──────────────────────────────────────────────────────
    def next_fire_time(self, slot: ScheduleSlot, now: dt.datetime | None = None) -> dt.datetime:
        return next_fire_time(slot, now or self.clock.now(), self.tzinfo)

    async def _run_slot(self, timer: SlotTimer) -> None:
        label = timer.slot.label
        while True:
            fire_at = self.next_fire_time(timer.slot)
            timer.arm(fire_at)
            LOG.info("[scheduler] next %s update scheduled for %s", label, fire_at.isoformat())
            await self.clock.sleep_until(fire_at)
            timer.fire()
            await self._fire_once(label)

    async def _fire_once(self, label: str) -> None:
        try:
            await asyncio.shield(self._single_flight(label))
        except Exception as exc:  # noqa: BLE001 – keep the slot alive
            LOG.error("[scheduler] %s update crashed: %s", label, exc, exc_info=True)

    # ── Pipeline ─────────────────────────────────────────────────────────
    def _single_flight(self, label: str) -> "asyncio.Task[PipelineOutcome]":
        if self._inflight is not None and not self._inflight.done():
            LOG.info("[scheduler] %s update joins the run already in flight", label)
            return self._inflight
        task = asyncio.get_running_loop().create_task(self._execute(label))
        task.add_done_callback(self._pipeline_done)
        self._inflight = task
        return task

    def _pipeline_done(self, task: "asyncio.Task[PipelineOutcome]") -> None:
        if task is self._inflight:
            self._inflight = None
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOG.error("[scheduler] pipeline failed unexpectedly: %r", exc)

    async def _execute(self, label: str) -> PipelineOutcome:
        LOG.info("[scheduler] attempting %s location update", label)
        try:
            coords = await self.position.acquire(PositionMode.SCHEDULED)
        except PositionError as exc:
            LOG.info("[scheduler] %s live location failed (%s), trying cache", label, exc)
            return await self._serve_fallback(label, exc)

        city_info = await self.geocoder.resolve(coords)
        now = self.clock.now()
        snapshot = LocationSnapshot(
            city_info=city_info,
            timestamp=now,
            source=SourceKind.LIVE,
            coordinates=coords,
        )

        previous = self.cache.get()
        if previous is not None and not previous.city_info.same_place(city_info):
            LOG.info(
                "[scheduler] city changed: %s, %s → %s, %s",
                previous.city_info.city,
                previous.city_info.country,
                city_info.city,
                city_info.country,
            )

        self.cache.put(snapshot)
        self.history.record(UpdateRecord.success(now, snapshot))
        LOG.info(
            "[scheduler] %s location update successful: %s, %s (%s accuracy)",
            label,
            city_info.city,
            city_info.country,
            city_info.accuracy.value,
        )
        await self._deliver(snapshot)
        return snapshot

    async def _serve_fallback(self, label: str, cause: PositionError) -> PipelineOutcome:
        now = self.clock.now()
        cached = self.cache.get()
        if cached is not None and self.cache.is_fresh(cached, now):
            snapshot = cached.restamped(now)
            self.history.record(UpdateRecord.success(now, snapshot))
            LOG.info(
                "[scheduler] using fresh cached location for %s (acquired %s)",
                label,
                snapshot.acquired_at.isoformat() if snapshot.acquired_at else "?",
            )
            await self._deliver(snapshot)
            return snapshot

        message = f"Failed to get {label} location: {cause}"
        LOG.error("[scheduler] %s", message)
        error = NoFreshFallback(message)
        error.__cause__ = cause
        self.history.record(UpdateRecord.failure(now, message))
        await self._deliver(error)
        return error

    async def _deliver(self, event: PipelineOutcome) -> None:
        if isinstance(event, LocationUpdateError):
            callback: Callable[[Any], Any] | None = self._on_error
            payload: Any = str(event)
        else:
            callback = self._on_update
            payload = event

        if callback is not None:
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001 – a consumer bug must not break the pipeline
                LOG.error("[scheduler] update callback failed: %s", exc, exc_info=True)

        for sub in list(self._subscribers):
            sub._push(event)

    # ── Public API ───────────────────────────────────────────────────────
    async def force_update(self) -> LocationSnapshot:
        """
        Run the pipeline now and return its snapshot.

        Joins a run that is already in flight instead of starting another.
        Slot timers are left untouched.

        Raises:
            NoFreshFallback: live acquisition failed and the cache is empty
                or stale.
        """
        LOG.info("[scheduler] manual location update requested")
        outcome = await asyncio.shield(self._single_flight("Manual"))
        if isinstance(outcome, LocationUpdateError):
            raise outcome
        return outcome

    def subscribe(self, maxsize: int = SUBSCRIPTION_BUFFER) -> Subscription:
        """Open an event stream; only the newest *maxsize* unread events are kept."""
        sub = Subscription(self, maxsize)
        self._subscribers.add(sub)
        return sub

    def get_next_update_times(self) -> list[NextUpdate]:
        now = self.clock.now()
        return [NextUpdate(slot.label, self.next_fire_time(slot, now)) for slot in self.slots]

    def get_update_stats(self) -> UpdateStats:
        return self.history.stats()

    def get_update_history(self, limit: int | None = None) -> list[UpdateRecord]:
        return self.history.recent(limit)

    def get_current_best_location(self) -> LocationSnapshot | None:
        """Cached snapshot if any (fresh or not), else the last successful update."""
        cached = self.cache.get()
        if cached is not None:
            return cached
        return self.history.latest_success()

    def is_fresh(self, snapshot: LocationSnapshot) -> bool:
        return self.cache.is_fresh(snapshot, self.clock.now())


__all__ = [
    "SchedulerState",
    "SlotState",
    "SlotTimer",
    "Subscription",
    "UpdateScheduler",
    "next_fire_time",
]
