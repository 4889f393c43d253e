"""
snapshot_cache.py
~~~~~~~~~~~~~~~~~
Store and retrieve the **last known location** so the pipeline can fall
back on it when live positioning is silent.

* Exactly one snapshot is kept; every ``put`` overwrites it.
* Freshness is evaluated when the entry is *read*, so an entry goes stale
  without any write happening.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Final

from .constants import FRESHNESS_H
from .models import LocationSnapshot
from .storage import KeyValueStore

CACHE_KEY: Final = "last_known_location"
LOG = logging.getLogger("snapshot_cache")


class SnapshotCache:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        freshness: dt.timedelta = dt.timedelta(hours=FRESHNESS_H),
        key: str = CACHE_KEY,
    ) -> None:
        self._store = store
        self._key = key
        self.freshness = freshness

    def get(self) -> LocationSnapshot | None:
        """
        Return the cached snapshot marked ``source=cached``, or *None*.

        A corrupt entry is logged and treated as absent.
        """
        raw = self._store.get(self._key)
        if not raw:
            return None
        if not isinstance(raw, dict):
            LOG.warning("[cache] Ignoring unreadable entry (%s)", type(raw).__name__)
            return None
        try:
            return LocationSnapshot.from_dict(raw).as_cached()
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            LOG.warning("[cache] Ignoring unreadable entry: %s", exc)
            return None

    def put(self, snapshot: LocationSnapshot) -> None:
        self._store.put(self._key, snapshot.to_dict())
        LOG.info(
            "[cache] saved %s, %s (%s)",
            snapshot.city_info.city,
            snapshot.city_info.country,
            snapshot.source.value,
        )

    def is_fresh(self, snapshot: LocationSnapshot, now: dt.datetime) -> bool:
        """True while ``now - snapshot.timestamp`` is below the window."""
        return (now - snapshot.timestamp) < self.freshness


__all__ = ["CACHE_KEY", "SnapshotCache"]
