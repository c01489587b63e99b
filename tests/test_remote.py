"""
Tests for the Supabase remote stores and auth provider, against a
mocked client.
"""

import asyncio
from unittest.mock import MagicMock

import httpx
import pytest

from advisor_sync.auth import SupabaseAuthProvider
from advisor_sync.db.remote import SupabaseBackupStore, SupabaseRemoteStore
from advisor_sync.errors import RemoteError


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio needed)."""
    return asyncio.run(coro)


class FakeAPIError(Exception):
    """Shape of postgrest's APIError: message plus code."""

    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.message = message
        self.code = code


@pytest.fixture
def mock_supabase():
    """Mock Supabase client whose query builder chains back to itself."""
    mock_client = MagicMock()

    mock_table = MagicMock()
    for method in ("select", "update", "upsert", "delete", "eq", "lt", "order", "maybe_single"):
        getattr(mock_table, method).return_value = mock_table
    mock_table.execute.return_value = MagicMock(data=[])

    mock_client.table.return_value = mock_table
    return mock_client


class TestSupabaseRemoteStore:

    def test_fetch_selects_columns_for_user(self, mock_supabase):
        table = mock_supabase.table.return_value
        table.execute.return_value = MagicMock(data={"profile_data": {"name": "Sam"}})
        store = SupabaseRemoteStore(mock_supabase)

        record = _run(store.fetch_user_record("user-1", ["profile_data", "notes_data"]))

        assert record == {"profile_data": {"name": "Sam"}}
        mock_supabase.table.assert_called_with("users_profile")
        table.select.assert_called_with("profile_data, notes_data")
        table.eq.assert_called_with("id", "user-1")

    def test_fetch_no_row(self, mock_supabase):
        mock_supabase.table.return_value.execute.return_value = None
        store = SupabaseRemoteStore(mock_supabase)

        assert _run(store.fetch_user_record("user-1", ["profile_data"])) is None

    def test_fetch_no_rows_error_code(self, mock_supabase):
        mock_supabase.table.return_value.execute.side_effect = FakeAPIError(
            "JSON object requested, multiple (or no) rows returned", "PGRST116"
        )
        store = SupabaseRemoteStore(mock_supabase)

        assert _run(store.fetch_user_record("user-1", ["profile_data"])) is None

    def test_backend_errors_are_wrapped(self, mock_supabase):
        mock_supabase.table.return_value.execute.side_effect = FakeAPIError("permission denied", "42501")
        store = SupabaseRemoteStore(mock_supabase)

        with pytest.raises(RemoteError) as exc_info:
            _run(store.update_user_record("user-1", {"notes_data": []}))
        assert exc_info.value.code == "42501"

    def test_transport_errors_pass_through(self, mock_supabase):
        mock_supabase.table.return_value.execute.side_effect = httpx.ConnectError("connection refused")
        store = SupabaseRemoteStore(mock_supabase)

        with pytest.raises(httpx.ConnectError):
            _run(store.fetch_user_record("user-1", ["profile_data"]))

    def test_update(self, mock_supabase):
        table = mock_supabase.table.return_value
        store = SupabaseRemoteStore(mock_supabase, table="profiles")

        _run(store.update_user_record("user-1", {"notes_data": ["a"]}))

        mock_supabase.table.assert_called_with("profiles")
        table.update.assert_called_with({"notes_data": ["a"]})
        table.eq.assert_called_with("id", "user-1")


class TestSupabaseBackupStore:

    def test_upsert_on_user_and_date(self, mock_supabase):
        table = mock_supabase.table.return_value
        store = SupabaseBackupStore(mock_supabase)
        row = {"user_id": "user-1", "backup_date": "2026-03-20", "backup_data": {}}

        _run(store.upsert_backup(row))

        mock_supabase.table.assert_called_with("user_backups")
        table.upsert.assert_called_with(row, on_conflict="user_id,backup_date")

    def test_delete_before_cutoff(self, mock_supabase):
        table = mock_supabase.table.return_value

        _run(SupabaseBackupStore(mock_supabase).delete_backups_before("user-1", "2026-03-06"))

        table.eq.assert_called_with("user_id", "user-1")
        table.lt.assert_called_with("backup_date", "2026-03-06")

    def test_list_newest_first(self, mock_supabase):
        table = mock_supabase.table.return_value
        table.execute.return_value = MagicMock(data=[{"backup_date": "2026-03-20", "created_at": None}])

        rows = _run(SupabaseBackupStore(mock_supabase).list_backups("user-1"))

        assert rows == [{"backup_date": "2026-03-20", "created_at": None}]
        table.order.assert_called_with("backup_date", desc=True)

    def test_fetch_backup_data(self, mock_supabase):
        table = mock_supabase.table.return_value
        table.execute.return_value = MagicMock(data={"backup_data": {"health-advisor-notes": ["a"]}})

        data = _run(SupabaseBackupStore(mock_supabase).fetch_backup("user-1", "2026-03-20"))

        assert data == {"health-advisor-notes": ["a"]}


class TestAuthProviders:

    def test_supabase_session_user(self):
        client = MagicMock()
        client.auth.get_session.return_value = MagicMock(user=MagicMock(id="user-9"))
        assert SupabaseAuthProvider(client).current_user_id() == "user-9"

    def test_supabase_no_session(self):
        client = MagicMock()
        client.auth.get_session.return_value = None
        assert SupabaseAuthProvider(client).current_user_id() is None

    def test_supabase_session_error_is_signed_out(self):
        client = MagicMock()
        client.auth.get_session.side_effect = RuntimeError("refresh failed")
        assert SupabaseAuthProvider(client).current_user_id() is None

