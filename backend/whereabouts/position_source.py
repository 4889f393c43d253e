"""
position_source.py
~~~~~~~~~~~~~~~~~~
One-shot position acquisition with a tiered accuracy/timeout policy.

Public helper
-------------
    PositionSource(platform).acquire(mode) -> Coordinates
        raises PositionTimeout | PositionPermissionDenied | PositionUnavailable

The *platform* is whatever can produce a fix on this host:

* :class:`GeolocationApiPlatform` – Google Geolocation API (Wi-Fi/IP based).
* :class:`StaticPlatform` – fixed coordinates from configuration.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Final, Optional, Protocol

import httpx

from .api_logging import logged_request_async
from .constants import USER_AGENT
from .errors import (
    PositionError,
    PositionPermissionDenied,
    PositionTimeout,
    PositionUnavailable,
)
from .models import Coordinates

UTC: Final = dt.timezone.utc
LOG = logging.getLogger("position_source")

GEOLOCATE_URL: Final = "https://www.googleapis.com/geolocation/v1/geolocate"

# Extra slack on top of the platform timeout before we give up on it.
TIMEOUT_GRACE_S: Final = 1.0


class PositionMode(str, Enum):
    QUICK = "quick"
    PRECISE = "precise"
    SCHEDULED = "scheduled"


@dataclass(frozen=True)
class AcquisitionPolicy:
    accuracy_hint: str  # "low" | "high"
    timeout_s: float
    max_cache_age_s: float


MODE_POLICIES: Final[dict[PositionMode, AcquisitionPolicy]] = {
    PositionMode.QUICK: AcquisitionPolicy("low", timeout_s=5.0, max_cache_age_s=60.0),
    PositionMode.PRECISE: AcquisitionPolicy("high", timeout_s=15.0, max_cache_age_s=300.0),
    PositionMode.SCHEDULED: AcquisitionPolicy("high", timeout_s=15.0, max_cache_age_s=300.0),
}


@dataclass(frozen=True)
class Fix:
    latitude: float
    longitude: float
    accuracy_m: Optional[float]
    timestamp: dt.datetime


class PositionPlatform(Protocol):
    async def request_fix(
        self, accuracy_hint: str, timeout: float, max_cache_age: float
    ) -> Fix:
        """Return a fix or raise a :class:`PositionError` subclass."""


# ── Platforms ────────────────────────────────────────────────────────────
class StaticPlatform:
    """Always reports the configured coordinates."""

    def __init__(self, latitude: float, longitude: float) -> None:
        if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
            raise ValueError(f"Invalid coordinates: {latitude}, {longitude}")
        self.latitude = latitude
        self.longitude = longitude

    async def request_fix(
        self, accuracy_hint: str, timeout: float, max_cache_age: float
    ) -> Fix:
        return Fix(self.latitude, self.longitude, None, dt.datetime.now(UTC))


class GeolocationApiPlatform:
    """
    Google Geolocation API client.

    * A previous fix younger than *max_cache_age* is returned without a
      network call.
    * Once the API answers 403 (key rejected / API disabled) every later
      request fails fast with :class:`PositionPermissionDenied`.
    """

    def __init__(self, api_key: str, *, url: str = GEOLOCATE_URL) -> None:
        self.api_key = api_key
        self.url = url
        self._last_fix: Fix | None = None
        self._denied = False

    async def request_fix(
        self, accuracy_hint: str, timeout: float, max_cache_age: float
    ) -> Fix:
        if self._denied:
            raise PositionPermissionDenied("Geolocation permission denied")
        if not self.api_key:
            raise PositionUnavailable("Geolocation API key not configured")

        now = dt.datetime.now(UTC)
        if self._last_fix is not None:
            age_s = (now - self._last_fix.timestamp).total_seconds()
            if age_s <= max_cache_age:
                LOG.debug("[geolocate] reusing %.0f s old fix", age_s)
                return self._last_fix

        body = {"considerIp": True}
        try:
            async with httpx.AsyncClient(
                timeout=timeout, headers={"User-Agent": USER_AGENT}
            ) as client:
                resp = await logged_request_async(
                    client,
                    "post",
                    self.url,
                    provider="geolocate",
                    params={"key": self.api_key},
                    json=body,
                )
        except httpx.TimeoutException as exc:
            raise PositionTimeout(f"Geolocation timed out after {timeout:.0f} s") from exc
        except httpx.HTTPError as exc:
            raise PositionUnavailable(f"Geolocation request failed: {exc}") from exc

        if resp.status_code == 403:
            self._denied = True
            raise PositionPermissionDenied("Geolocation permission denied (HTTP 403)")
        if resp.status_code != 200:
            raise PositionUnavailable(f"Geolocation unavailable (HTTP {resp.status_code})")

        try:
            data = resp.json()
            loc = data["location"]
            fix = Fix(
                latitude=float(loc["lat"]),
                longitude=float(loc["lng"]),
                accuracy_m=float(data["accuracy"]) if "accuracy" in data else None,
                timestamp=now,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise PositionUnavailable(f"Malformed geolocation response: {exc}") from exc

        LOG.info(
            "[geolocate] fix %.4f, %.4f ±%s m (hint=%s)",
            fix.latitude,
            fix.longitude,
            f"{fix.accuracy_m:.0f}" if fix.accuracy_m is not None else "?",
            accuracy_hint,
        )
        self._last_fix = fix
        return fix


# ── Source ───────────────────────────────────────────────────────────────
class PositionSource:
    """Maps acquisition modes onto one bounded platform call."""

    def __init__(self, platform: PositionPlatform) -> None:
        self.platform = platform
        self.permission = "pending"  # "pending" | "granted" | "denied"

    async def acquire(self, mode: PositionMode = PositionMode.SCHEDULED) -> Coordinates:
        mode = PositionMode(mode)
        policy = MODE_POLICIES[mode]
        try:
            fix = await asyncio.wait_for(
                self.platform.request_fix(
                    policy.accuracy_hint, policy.timeout_s, policy.max_cache_age_s
                ),
                timeout=policy.timeout_s + TIMEOUT_GRACE_S,
            )
        except asyncio.TimeoutError as exc:
            LOG.warning("[position] %s acquisition timed out", mode.value)
            raise PositionTimeout(
                f"Position timed out after {policy.timeout_s:.0f} s"
            ) from exc
        except PositionPermissionDenied:
            self.permission = "denied"
            LOG.warning("[position] permission denied")
            raise
        except PositionError as exc:
            LOG.warning("[position] %s acquisition failed: %s", mode.value, exc)
            raise
        except Exception as exc:  # noqa: BLE001 – platform bug, report as unavailable
            LOG.error("[position] platform error: %s", exc, exc_info=True)
            raise PositionUnavailable(f"Position unavailable: {exc}") from exc

        self.permission = "granted"
        return Coordinates(latitude=fix.latitude, longitude=fix.longitude)


__all__ = [
    "AcquisitionPolicy",
    "Fix",
    "GeolocationApiPlatform",
    "MODE_POLICIES",
    "PositionMode",
    "PositionPlatform",
    "PositionSource",
    "StaticPlatform",
]
