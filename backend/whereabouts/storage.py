"""storage.py
~~~~~~~~~~
Durable key/value store for the cache entry and the update history.

Each key is one small JSON file inside ``PERSIST_DIR``; writes go through a
temporary file and ``Path.replace`` so a crash never leaves a half-written
record behind. :class:`MemoryStore` offers the same interface without
touching disk.

Storage:
    - Production: $PERSIST_DIR (e.g. a mounted volume)
    - Development: local_data/
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Protocol

LOG = logging.getLogger("storage")

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def _determine_dir() -> Path:
    """Resolve and create the persistence directory."""
    base = Path(os.getenv("PERSIST_DIR", "local_data")).expanduser()
    try:
        base.mkdir(parents=True, exist_ok=True)
        return base
    except (PermissionError, OSError):
        fallback = (Path.cwd() / "local_data").resolve()
        fallback.mkdir(parents=True, exist_ok=True)
        LOG.warning("Using %s instead of %s", fallback, base)
        return fallback


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def put(self, key: str, value: Any) -> None: ...


class JsonFileStore:
    """One ``<key>.json`` file per key under *directory*."""

    def __init__(self, directory: Path | None = None) -> None:
        self.directory = directory if directory is not None else _determine_dir()
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise ValueError(f"Invalid store key: {key!r}")
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Any | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOG.warning("[storage] Failed to load %s: %s", path.name, exc)
            return None

    def put(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        try:
            tmp.write_text(json.dumps(value, indent=2), encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            LOG.error("[storage] Failed to save %s: %s", path.name, exc)


class MemoryStore:
    """Process-local store; values are deep-copied in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def get(self, key: str) -> Any | None:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    def put(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)


__all__ = ["JsonFileStore", "KeyValueStore", "MemoryStore"]
