"""
Supabase implementations of the remote store protocols.

The supabase-py client is synchronous; every call runs in a worker
thread so the event loop is never blocked on the network.
"""

import asyncio
import logging
from typing import Any, Callable

from supabase import Client

from advisor_sync.errors import RemoteError, is_network_error

logger = logging.getLogger(__name__)

# PostgREST: "JSON object requested, multiple (or no) rows returned"
NO_ROWS_CODE = "PGRST116"


def _wrap_error(e: Exception) -> Exception:
    """Keep transport errors as-is; wrap backend rejections in RemoteError."""
    if isinstance(e, RemoteError) or is_network_error(e):
        return e
    message = getattr(e, "message", None) or str(e)
    return RemoteError(message, code=getattr(e, "code", None))


async def _execute(fn: Callable[[], Any]) -> Any:
    try:
        return await asyncio.to_thread(fn)
    except Exception as e:
        wrapped = _wrap_error(e)
        if wrapped is e:
            raise
        raise wrapped from e


class SupabaseRemoteStore:
    """Per-user row in the profile table, one JSONB column per domain."""

    def __init__(self, client: Client, table: str = "users_profile"):
        self.client = client
        self.table = table

    async def fetch_user_record(self, user_id: str, fields: list[str]) -> dict[str, Any] | None:
        columns = ", ".join(fields)

        def query():
            return (
                self.client.table(self.table)
                .select(columns)
                .eq("id", user_id)
                .maybe_single()
                .execute()
            )

        try:
            response = await _execute(query)
        except RemoteError as e:
            if e.code == NO_ROWS_CODE:
                return None
            raise

        # maybe_single() yields None (or empty data) when no row exists
        if response is None or not response.data:
            return None
        return response.data

    async def update_user_record(self, user_id: str, fields: dict[str, Any]) -> None:
        def query():
            return (
                self.client.table(self.table)
                .update(fields)
                .eq("id", user_id)
                .execute()
            )

        await _execute(query)


class SupabaseBackupStore:
    """Daily snapshots in the backup table, unique on (user_id, backup_date)."""

    def __init__(self, client: Client, table: str = "user_backups"):
        self.client = client
        self.table = table

    async def upsert_backup(self, row: dict[str, Any]) -> None:
        def query():
            return (
                self.client.table(self.table)
                .upsert(row, on_conflict="user_id,backup_date")
                .execute()
            )

        await _execute(query)

    async def delete_backups_before(self, user_id: str, cutoff_date: str) -> None:
        def query():
            return (
                self.client.table(self.table)
                .delete()
                .eq("user_id", user_id)
                .lt("backup_date", cutoff_date)
                .execute()
            )

        await _execute(query)

    async def list_backups(self, user_id: str) -> list[dict[str, Any]]:
        def query():
            return (
                self.client.table(self.table)
                .select("backup_date, created_at")
                .eq("user_id", user_id)
                .order("backup_date", desc=True)
                .execute()
            )

        response = await _execute(query)
        return response.data or []

    async def fetch_backup(self, user_id: str, backup_date: str) -> dict[str, Any] | None:
        def query():
            return (
                self.client.table(self.table)
                .select("backup_data")
                .eq("user_id", user_id)
                .eq("backup_date", backup_date)
                .maybe_single()
                .execute()
            )

        try:
            response = await _execute(query)
        except RemoteError as e:
            if e.code == NO_ROWS_CODE:
                return None
            raise

        if response is None or not response.data:
            return None
        return response.data.get("backup_data")
