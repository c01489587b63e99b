"""
Storage backends for LocalStore.

A backend is a flat string → string store shared by every tab on the
device. Backends enforce a byte capacity and raise QuotaExceededError
when a write would exceed it, so LocalStore can prune and retry.

Backends also emit storage events (key, source) to registered listeners
on every write or removal. TabBroadcaster uses these as its fallback
when no broadcast channel is available.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Protocol, runtime_checkable

from advisor_sync.errors import QuotaExceededError

logger = logging.getLogger(__name__)

StorageListener = Callable[[str, str | None], None]


@runtime_checkable
class StorageBackend(Protocol):
    """
    Flat key/value persistence shared by all tabs on a device.

    `source` identifies the writing tab; listeners use it to ignore
    their own writes.
    """

    def get_item(self, key: str) -> str | None:
        ...

    def set_item(self, key: str, value: str, source: str | None = None) -> None:
        """Store a value. Raises QuotaExceededError when capacity is exhausted."""
        ...

    def remove_item(self, key: str, source: str | None = None) -> None:
        ...

    def keys(self) -> list[str]:
        ...

    def add_listener(self, listener: StorageListener) -> Callable[[], None]:
        """Register a storage-event listener. Returns an unsubscribe function."""
        ...


class _ListenerMixin:
    """Storage-event fan-out shared by the concrete backends."""

    def _init_listeners(self) -> None:
        self._listeners: list[StorageListener] = []

    def add_listener(self, listener: StorageListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, key: str, source: str | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(key, source)
            except Exception as e:
                logger.error(f"Storage listener failed for {key}: {e}")


class MemoryBackend(_ListenerMixin):
    """
    Dict-backed storage with an optional byte capacity.

    Usage is measured as len(key) + len(value) over all entries, which is
    how browser storage quotas are usually accounted.
    """

    def __init__(self, capacity_bytes: int | None = None):
        self.capacity_bytes = capacity_bytes
        self._data: dict[str, str] = {}
        self._init_listeners()

    @property
    def used_bytes(self) -> int:
        return sum(len(k) + len(v) for k, v in self._data.items())

    def get_item(self, key: str) -> str | None:
        return self._data.get(key)

    def set_item(self, key: str, value: str, source: str | None = None) -> None:
        if self.capacity_bytes is not None:
            current = self._data.get(key)
            freed = len(key) + len(current) if current is not None else 0
            needed = self.used_bytes - freed + len(key) + len(value)
            if needed > self.capacity_bytes:
                raise QuotaExceededError(
                    f"Writing {key} needs {needed} bytes, capacity is {self.capacity_bytes}"
                )
        self._data[key] = value
        self._emit(key, source)

    def remove_item(self, key: str, source: str | None = None) -> None:
        if self._data.pop(key, None) is not None:
            self._emit(key, source)

    def keys(self) -> list[str]:
        return list(self._data)


class SqliteBackend(_ListenerMixin):
    """
    SQLite-backed storage for a device.

    One table, one row per key. Storage events are delivered to
    listeners registered in this process.
    """

    def __init__(self, path: str | Path, capacity_bytes: int | None = None):
        self.path = Path(path).expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.capacity_bytes = capacity_bytes
        self._lock = threading.Lock()
        self._init_listeners()
        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path)
        try:
            yield conn
        finally:
            conn.close()

    @property
    def used_bytes(self) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COALESCE(SUM(LENGTH(key) + LENGTH(value)), 0) FROM kv"
            ).fetchone()
        return int(row[0])

    def get_item(self, key: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set_item(self, key: str, value: str, source: str | None = None) -> None:
        with self._lock, self._connect() as conn:
            if self.capacity_bytes is not None:
                row = conn.execute(
                    """SELECT COALESCE(SUM(LENGTH(key) + LENGTH(value)), 0)
                       FROM kv WHERE key != ?""",
                    (key,),
                ).fetchone()
                needed = int(row[0]) + len(key) + len(value)
                if needed > self.capacity_bytes:
                    raise QuotaExceededError(
                        f"Writing {key} needs {needed} bytes, capacity is {self.capacity_bytes}"
                    )
            conn.execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                (key, value),
            )
            conn.commit()
        self._emit(key, source)

    def remove_item(self, key: str, source: str | None = None) -> None:
        with self._lock, self._connect() as conn:
            cursor = conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()
            removed = cursor.rowcount > 0
        if removed:
            self._emit(key, source)

    def keys(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT key FROM kv ORDER BY key").fetchall()
        return [row[0] for row in rows]
