"""
models.py
~~~~~~~~~
Value types passed between the pipeline stages and persisted by the stores.

Every persisted type round-trips through plain JSON dicts via
``to_dict()`` / ``from_dict()``; timestamps are ISO-8601 UTC strings
under the ``"ts"`` key, matching the other JSON files in ``PERSIST_DIR``.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Final, Optional

UTC: Final = dt.timezone.utc

UNKNOWN_CITY: Final = "Unknown City"
UNKNOWN_COUNTRY: Final = "Unknown Country"


class AccuracyTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SourceKind(str, Enum):
    LIVE = "live"
    CACHED = "cached"
    FALLBACK = "fallback"


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


def _parse_ts(value: str) -> dt.datetime:
    ts = dt.datetime.fromisoformat(value)
    return ts if ts.tzinfo else ts.replace(tzinfo=UTC)


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float

    def to_dict(self) -> dict[str, float]:
        return {"lat": self.latitude, "lon": self.longitude}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Coordinates":
        return cls(latitude=float(data["lat"]), longitude=float(data["lon"]))


@dataclass(frozen=True)
class CityInfo:
    """City/country pair with the confidence of the geocoder that produced it."""

    city: str
    country: str
    accuracy: AccuracyTier
    full_address: Optional[str] = None

    @classmethod
    def unknown(cls) -> "CityInfo":
        """Sentinel returned when every geocoding provider failed."""
        return cls(city=UNKNOWN_CITY, country=UNKNOWN_COUNTRY, accuracy=AccuracyTier.LOW)

    @property
    def is_unknown(self) -> bool:
        return self.city == UNKNOWN_CITY and self.country == UNKNOWN_COUNTRY

    def same_place(self, other: "CityInfo") -> bool:
        return (self.city, self.country) == (other.city, other.country)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "city": self.city,
            "country": self.country,
            "accuracy": self.accuracy.value,
        }
        if self.full_address:
            data["full_address"] = self.full_address
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CityInfo":
        return cls(
            city=data.get("city") or UNKNOWN_CITY,
            country=data.get("country") or UNKNOWN_COUNTRY,
            accuracy=AccuracyTier(data.get("accuracy", AccuracyTier.MEDIUM.value)),
            full_address=data.get("full_address"),
        )


@dataclass(frozen=True)
class LocationSnapshot:
    """
    One resolved "where the user is believed to be" value.

    ``timestamp`` is when the value was last confirmed; for a snapshot
    served from the cache as a fallback it is the serving instant.
    ``acquired_at`` is when the underlying position was actually resolved
    and never changes once set.
    """

    city_info: CityInfo
    timestamp: dt.datetime
    source: SourceKind
    coordinates: Optional[Coordinates] = None
    acquired_at: Optional[dt.datetime] = None

    def __post_init__(self) -> None:
        if self.acquired_at is None:
            object.__setattr__(self, "acquired_at", self.timestamp)

    def as_cached(self) -> "LocationSnapshot":
        """Same value, marked as served from the cache."""
        return replace(self, source=SourceKind.CACHED)

    def restamped(self, now: dt.datetime) -> "LocationSnapshot":
        """Cached copy confirmed at *now*; ``acquired_at`` is preserved."""
        return replace(self, source=SourceKind.CACHED, timestamp=now)

    def age(self, now: dt.datetime) -> dt.timedelta:
        return now - self.timestamp

    def to_dict(self) -> dict[str, Any]:
        return {
            "ts": self.timestamp.isoformat(),
            "acquired_at": self.acquired_at.isoformat() if self.acquired_at else None,
            "source": self.source.value,
            "coordinates": self.coordinates.to_dict() if self.coordinates else None,
            "city_info": self.city_info.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LocationSnapshot":
        coords = data.get("coordinates")
        acquired = data.get("acquired_at")
        return cls(
            city_info=CityInfo.from_dict(data["city_info"]),
            timestamp=_parse_ts(data["ts"]),
            source=SourceKind(data.get("source", SourceKind.LIVE.value)),
            coordinates=Coordinates.from_dict(coords) if coords else None,
            acquired_at=_parse_ts(acquired) if acquired else None,
        )


@dataclass(frozen=True)
class UpdateRecord:
    timestamp: dt.datetime
    outcome: Outcome
    snapshot: Optional[LocationSnapshot] = None
    error_message: Optional[str] = None

    @classmethod
    def success(cls, ts: dt.datetime, snapshot: LocationSnapshot) -> "UpdateRecord":
        return cls(timestamp=ts, outcome=Outcome.SUCCESS, snapshot=snapshot)

    @classmethod
    def failure(cls, ts: dt.datetime, message: str) -> "UpdateRecord":
        return cls(timestamp=ts, outcome=Outcome.FAILURE, error_message=message)

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "ts": self.timestamp.isoformat(),
            "outcome": self.outcome.value,
        }
        if self.snapshot is not None:
            data["snapshot"] = self.snapshot.to_dict()
        if self.error_message:
            data["error"] = self.error_message
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UpdateRecord":
        snap = data.get("snapshot")
        return cls(
            timestamp=_parse_ts(data["ts"]),
            outcome=Outcome(data["outcome"]),
            snapshot=LocationSnapshot.from_dict(snap) if snap else None,
            error_message=data.get("error"),
        )


@dataclass(frozen=True)
class ScheduleSlot:
    hour: int
    minute: int
    label: str


@dataclass(frozen=True)
class NextUpdate:
    label: str
    fire_at: dt.datetime

    def to_dict(self) -> dict[str, str]:
        return {"label": self.label, "fire_at": self.fire_at.isoformat()}


@dataclass(frozen=True)
class UpdateStats:
    total: int = 0
    successes: int = 0
    failures: int = 0
    last_success_at: Optional[dt.datetime] = None
    last_failure_at: Optional[dt.datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successes": self.successes,
            "failures": self.failures,
            "last_success_at": (
                self.last_success_at.isoformat() if self.last_success_at else None
            ),
            "last_failure_at": (
                self.last_failure_at.isoformat() if self.last_failure_at else None
            ),
        }


__all__ = [
    "AccuracyTier",
    "CityInfo",
    "Coordinates",
    "LocationSnapshot",
    "NextUpdate",
    "Outcome",
    "ScheduleSlot",
    "SourceKind",
    "UNKNOWN_CITY",
    "UNKNOWN_COUNTRY",
    "UpdateRecord",
    "UpdateStats",
]
