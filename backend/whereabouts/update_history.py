"""update_history.py
~~~~~~~~~~~~~~~~~~
Bounded log of pipeline runs, newest first.

The history is loaded once at construction and rewritten to the store after
every record, so it survives restarts. Statistics are always derived from
the records on demand; nothing is counted separately.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Final

from .constants import HISTORY_MAX
from .models import LocationSnapshot, UpdateRecord, UpdateStats
from .storage import KeyValueStore

HISTORY_KEY: Final = "update_history"
LOG = logging.getLogger("update_history")


class UpdateHistory:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        max_size: int = HISTORY_MAX,
        key: str = HISTORY_KEY,
    ) -> None:
        self._store = store
        self._key = key
        self.max_size = max_size
        # Left end is the most recent record; maxlen evicts from the right.
        self._records: deque[UpdateRecord] = deque(maxlen=max_size)
        self._load()

    def _load(self) -> None:
        raw = self._store.get(self._key)
        if raw is None:
            return
        if not isinstance(raw, list):
            LOG.warning("[history] Ignoring unreadable history (%s)", type(raw).__name__)
            return
        for item in raw[: self.max_size]:
            try:
                self._records.append(UpdateRecord.from_dict(item))
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                LOG.warning("[history] Skipping malformed record: %s", exc)
        if self._records:
            LOG.info("[history] Loaded %d records", len(self._records))

    def _save(self) -> None:
        self._store.put(self._key, [rec.to_dict() for rec in self._records])

    def __len__(self) -> int:
        return len(self._records)

    def record(self, update: UpdateRecord) -> None:
        self._records.appendleft(update)
        self._save()
        LOG.debug("[history] %s recorded (total: %d)", update.outcome.value, len(self))

    def recent(self, n: int | None = None) -> list[UpdateRecord]:
        """Most-recent-first records, at most *n* of them."""
        records = list(self._records)
        return records if n is None else records[:n]

    def latest_success(self) -> LocationSnapshot | None:
        for rec in self._records:
            if rec.succeeded and rec.snapshot is not None:
                return rec.snapshot
        return None

    def stats(self) -> UpdateStats:
        successes = [rec for rec in self._records if rec.succeeded]
        failures = [rec for rec in self._records if not rec.succeeded]
        return UpdateStats(
            total=len(self._records),
            successes=len(successes),
            failures=len(failures),
            last_success_at=successes[0].timestamp if successes else None,
            last_failure_at=failures[0].timestamp if failures else None,
        )


__all__ = ["HISTORY_KEY", "UpdateHistory"]
