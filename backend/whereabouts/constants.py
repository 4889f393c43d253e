# backend/whereabouts/constants.py

"""
Global constants and environment-driven settings shared across modules,
including a single User-Agent string for the public geocoding services.
"""

from __future__ import annotations

import os

from .models import ScheduleSlot

USER_AGENT = "whereabouts/0.1 (+https://github.com/whereabouts/whereabouts)"

# ── Credentials ───────────────────────────────────────────────────────────
GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY", "")

# ── Freshness / history ───────────────────────────────────────────────────
FRESHNESS_H = float(os.getenv("FRESHNESS_H", "12"))
HISTORY_MAX = int(os.getenv("HISTORY_MAX", "10"))

# ── External call budgets (seconds) ───────────────────────────────────────
GEOCODE_TIMEOUT_S = float(os.getenv("GEOCODE_TIMEOUT_S", "10"))

# ── Schedule ──────────────────────────────────────────────────────────────
DEFAULT_SLOTS_SPEC = "08:00 Morning,14:00 Afternoon,20:00 Evening"
UPDATE_SLOTS = os.getenv("UPDATE_SLOTS", DEFAULT_SLOTS_SPEC)
SCHEDULE_TZ = os.getenv("SCHEDULE_TZ", "")
INITIAL_UPDATE = os.getenv("INITIAL_UPDATE", "1") not in ("0", "false", "no")

# ── Static positioning (hosts without a positioning capability) ───────────
STATIC_LAT = os.getenv("STATIC_LAT")
STATIC_LON = os.getenv("STATIC_LON")


def parse_slots(text: str) -> list[ScheduleSlot]:
    """
    Parse ``"HH:MM Label,HH:MM Label"`` into schedule slots.

    Raises:
        ValueError: on an empty slot list, a malformed entry or an out-of-range
            time.
    """
    slots: list[ScheduleSlot] = []
    for chunk in text.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        clock, _, label = chunk.partition(" ")
        hour_s, sep, minute_s = clock.partition(":")
        if not sep:
            raise ValueError(f"Malformed slot {chunk!r} (expected 'HH:MM Label')")
        hour, minute = int(hour_s), int(minute_s)
        if not (0 <= hour < 24 and 0 <= minute < 60):
            raise ValueError(f"Slot time out of range: {clock!r}")
        slots.append(ScheduleSlot(hour=hour, minute=minute, label=label.strip() or clock))
    if not slots:
        raise ValueError("No update slots configured")
    return slots


DEFAULT_SLOTS: list[ScheduleSlot] = parse_slots(DEFAULT_SLOTS_SPEC)

__all__ = [
    "DEFAULT_SLOTS",
    "FRESHNESS_H",
    "GEOCODE_TIMEOUT_S",
    "GOOGLE_MAPS_API_KEY",
    "HISTORY_MAX",
    "INITIAL_UPDATE",
    "SCHEDULE_TZ",
    "STATIC_LAT",
    "STATIC_LON",
    "UPDATE_SLOTS",
    "USER_AGENT",
    "parse_slots",
]
