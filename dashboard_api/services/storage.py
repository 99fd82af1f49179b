"""
PersistentStore - Key/value storage with per-entry absolute expiration.

Every value is wrapped as {"value": ..., "expiration": <epoch seconds>}
at write time. Reads check the expiration and delete elapsed entries, so
an expired credential is never handed back, even within one process.

Backends:
- JsonFileStorage: a single JSON file, survives restarts
- MemoryStorage: a plain dict, for tests and short-lived tools
- None: no persistent storage available; every operation is a no-op
"""

import json
import time
from pathlib import Path
from typing import Any, Callable, Protocol

from loguru import logger

SECONDS_PER_DAY = 24 * 60 * 60


class StorageBackend(Protocol):
    """Raw string storage, shaped like a browser's localStorage."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    """In-process storage backend."""

    def __init__(self):
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._items


class JsonFileStorage:
    """
    Storage backend persisted to one JSON file.

    The file is read once and kept in memory; every change rewrites it.
    A failed write is logged and the in-memory copy stays authoritative
    for the rest of the process.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path).expanduser()
        self._items: dict[str, str] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        if self._items is None:
            self._items = self._read()
        return self._items

    def _read(self) -> dict[str, str]:
        try:
            if not self._path.exists():
                return {}
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable storage file {self._path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _dump(self, items: dict[str, str]) -> None:
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(items), encoding="utf-8")
            tmp.replace(self._path)
        except OSError as e:
            logger.warning(f"Could not write storage file {self._path}: {e}")

    def get_item(self, key: str) -> str | None:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        items = self._load()
        items[key] = value
        self._dump(items)

    def remove_item(self, key: str) -> None:
        items = self._load()
        if key in items:
            del items[key]
            self._dump(items)

    def __contains__(self, key: str) -> bool:
        return key in self._load()


class PersistentStore:
    """
    Expiring key/value store over a StorageBackend.

    Usage:
        store = PersistentStore(JsonFileStorage("~/.dashboard_api/storage.json"))
        store.set("token", "abc", ttl_days=5)
        store.get("token")  # "abc" until five days have passed
    """

    def __init__(
        self,
        backend: StorageBackend | None,
        clock: Callable[[], float] = time.time,
    ):
        self._backend = backend
        self._clock = clock

    @property
    def available(self) -> bool:
        return self._backend is not None

    def set(self, key: str, value: Any, ttl_days: float = 5) -> None:
        if self._backend is None:
            return

        item = {
            "value": value,
            "expiration": self._clock() + ttl_days * SECONDS_PER_DAY,
        }
        self._backend.set_item(key, json.dumps(item))

    def get(self, key: str) -> Any | None:
        if self._backend is None:
            return None

        raw = self._backend.get_item(key)
        if raw is None:
            return None

        try:
            item = json.loads(raw)
            expiration = float(item["expiration"])
            value = item["value"]
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"Dropping corrupt storage entry '{key}': {e}")
            self._backend.remove_item(key)
            return None

        if self._clock() > expiration:
            self._backend.remove_item(key)
            logger.debug(f"Storage entry '{key}' expired")
            return None

        return value

    def clear(self, key: str) -> None:
        if self._backend is None:
            return
        self._backend.remove_item(key)
