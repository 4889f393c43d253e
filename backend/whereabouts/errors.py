"""
errors.py
~~~~~~~~~
Exception taxonomy for the location pipeline.

Only :class:`NoFreshFallback` ever reaches callers of the scheduler; the
position errors are caught by the pipeline and :class:`GeocodingExhausted`
never leaves :mod:`geocoding_service`.
"""

from __future__ import annotations


class LocationError(Exception):
    """Base class for everything raised by this package."""


# ── Position acquisition ─────────────────────────────────────────────────
class PositionError(LocationError):
    """The device position could not be acquired."""

    kind = "unavailable"


class PositionTimeout(PositionError):
    kind = "timeout"


class PositionPermissionDenied(PositionError):
    kind = "permission_denied"


class PositionUnavailable(PositionError):
    kind = "unavailable"


# ── Geocoding ────────────────────────────────────────────────────────────
class GeocodingExhausted(LocationError):
    """A geocoding provider produced no usable result."""


# ── Pipeline outcome ─────────────────────────────────────────────────────
class LocationUpdateError(LocationError):
    """Terminal outcome of one pipeline run."""


class NoFreshFallback(LocationUpdateError):
    """Live acquisition failed and no fresh cached snapshot exists."""


__all__ = [
    "GeocodingExhausted",
    "LocationError",
    "LocationUpdateError",
    "NoFreshFallback",
    "PositionError",
    "PositionPermissionDenied",
    "PositionTimeout",
    "PositionUnavailable",
]
