"""
Pytest configuration and fixtures for Advisor Sync tests.

Everything runs in memory: MemoryBackend for device storage, a private
ChannelHub per test for cross-tab messages, and fake remote/backup
stores standing in for Supabase.
"""

import asyncio
import copy
import os
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

# Set test environment before importing advisor_sync modules
os.environ["SYNC_ENV"] = "development"

from advisor_sync.auth import StaticAuthProvider
from advisor_sync.errors import RemoteError
from advisor_sync.storage import ChannelHub, LocalStore, MemoryBackend, TabBroadcaster
from advisor_sync.sync import Connectivity, SyncEngine


USER_ID = "user-1"


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio needed)."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FixedClock:
    """Controllable time source."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 3, 20, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeRemoteStore:
    """
    In-memory users_profile table.

    Attributes:
        rows: user_id -> row dict
        fail_fetch / fail_update: exception raised by every fetch / update
        reject_fields: columns whose updates are rejected with RemoteError
        delay: seconds each call sleeps first (timeout tests)
    """

    def __init__(self, rows: dict[str, dict] | None = None):
        self.rows: dict[str, dict[str, Any]] = rows or {}
        self.fetch_calls: list[tuple[str, list[str]]] = []
        self.update_calls: list[tuple[str, dict[str, Any]]] = []
        self.fail_fetch: Exception | None = None
        self.fail_update: Exception | None = None
        self.reject_fields: set[str] = set()
        self.delay = 0.0

    async def fetch_user_record(self, user_id: str, fields: list[str]) -> dict[str, Any] | None:
        self.fetch_calls.append((user_id, list(fields)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_fetch is not None:
            raise self.fail_fetch
        row = self.rows.get(user_id)
        if row is None:
            return None
        return {field: copy.deepcopy(row.get(field)) for field in fields}

    async def update_user_record(self, user_id: str, fields: dict[str, Any]) -> None:
        self.update_calls.append((user_id, copy.deepcopy(fields)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_update is not None:
            raise self.fail_update
        if self.reject_fields & set(fields):
            raise RemoteError("permission denied for column", code="42501")
        self.rows.setdefault(user_id, {"id": user_id}).update(copy.deepcopy(fields))

    def updated_fields(self) -> list[str]:
        """Every column written, in call order (excluding updated_at)."""
        return [f for _, fields in self.update_calls for f in fields if f != "updated_at"]


class FakeBackupStore:
    """In-memory user_backups table, unique on (user_id, backup_date)."""

    def __init__(self):
        self.rows: dict[tuple[str, str], dict[str, Any]] = {}
        self.upserts: list[dict[str, Any]] = []
        self.fail_upsert: Exception | None = None
        self.fail_delete: Exception | None = None
        self.fail_list: Exception | None = None
        # Seconds each call sleeps first (timeout tests)
        self.delay = 0.0

    def add(self, user_id: str, backup_date: str, data: dict | None = None, created_at: str | None = None) -> None:
        self.rows[(user_id, backup_date)] = {
            "user_id": user_id,
            "backup_date": backup_date,
            "backup_data": data or {},
            "created_at": created_at or f"{backup_date}T00:00:00+00:00",
        }

    def dates(self, user_id: str = USER_ID) -> list[str]:
        return sorted(date for (uid, date) in self.rows if uid == user_id)

    async def _wait(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)

    async def upsert_backup(self, row: dict[str, Any]) -> None:
        await self._wait()
        self.upserts.append(copy.deepcopy(row))
        if self.fail_upsert is not None:
            raise self.fail_upsert
        self.rows[(row["user_id"], row["backup_date"])] = copy.deepcopy(row)

    async def delete_backups_before(self, user_id: str, cutoff_date: str) -> None:
        await self._wait()
        if self.fail_delete is not None:
            raise self.fail_delete
        for key in [k for k in self.rows if k[0] == user_id and k[1] < cutoff_date]:
            del self.rows[key]

    async def list_backups(self, user_id: str) -> list[dict[str, Any]]:
        await self._wait()
        if self.fail_list is not None:
            raise self.fail_list
        rows = [r for (uid, _), r in self.rows.items() if uid == user_id]
        return [
            {"backup_date": r["backup_date"], "created_at": r["created_at"]}
            for r in sorted(rows, key=lambda r: r["backup_date"], reverse=True)
        ]

    async def fetch_backup(self, user_id: str, backup_date: str) -> dict[str, Any] | None:
        await self._wait()
        row = self.rows.get((user_id, backup_date))
        return copy.deepcopy(row["backup_data"]) if row else None


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def backend():
    """Shared device storage (every tab in a test sees the same data)."""
    return MemoryBackend()


@pytest.fixture
def hub():
    """Private broadcast hub so tests never see each other's messages."""
    return ChannelHub()


@pytest.fixture
def make_tab(backend, hub, clock):
    """Factory for LocalStores that share one backend and one channel."""

    def _make(**kwargs) -> LocalStore:
        broadcaster = TabBroadcaster(channel=hub.open("health-advisor-sync"), backend=backend)
        kwargs.setdefault("clock", clock)
        return LocalStore(backend, broadcaster=broadcaster, **kwargs)

    return _make


@pytest.fixture
def local(make_tab):
    return make_tab()


@pytest.fixture
def auth():
    return StaticAuthProvider(USER_ID)


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def backup_store():
    return FakeBackupStore()


@pytest.fixture
def connectivity():
    return Connectivity()


@pytest.fixture
def engine(local, remote, auth, connectivity, clock):
    return SyncEngine(
        local,
        remote,
        auth,
        connectivity=connectivity,
        debounce_seconds=0.01,
        timeout=1.0,
        clock=clock,
    )


@pytest.fixture
def sample_profile():
    """Profile blob as the app stores it."""
    return {
        "name": "Sam",
        "age": 34,
        "weight": 72,
        "calorieTarget": 2200,
        "goals": ["sleep better"],
        "updatedAt": "2026-03-19T08:00:00+00:00",
    }
