"""
Remote Store Protocols.

The engine treats the backend as an opaque key-value row per user: it
reads whole columns and replaces whole columns, and does all conflict
logic itself. The backend does no merging.

Implementations raise RemoteError for backend-side rejections and let
transport errors (httpx, timeouts) propagate unchanged so callers can
tell "backend said no" from "backend unreachable".
"""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class RemoteStore(Protocol):
    """Per-user record with one column per domain."""

    async def fetch_user_record(self, user_id: str, fields: list[str]) -> dict[str, Any] | None:
        """
        Fetch the requested columns of a user's row.

        Returns None when the user has no row yet.
        """
        ...

    async def update_user_record(self, user_id: str, fields: dict[str, Any]) -> None:
        """Replace the given columns of a user's row."""
        ...


@runtime_checkable
class BackupStore(Protocol):
    """Date-keyed snapshots, unique per (user_id, backup_date)."""

    async def upsert_backup(self, row: dict[str, Any]) -> None:
        """Insert or replace the snapshot for (row["user_id"], row["backup_date"])."""
        ...

    async def delete_backups_before(self, user_id: str, cutoff_date: str) -> None:
        """Delete snapshots with backup_date strictly before cutoff_date."""
        ...

    async def list_backups(self, user_id: str) -> list[dict[str, Any]]:
        """Rows with backup_date and created_at, newest first."""
        ...

    async def fetch_backup(self, user_id: str, backup_date: str) -> dict[str, Any] | None:
        """The snapshot's backup_data, or None if there is no such snapshot."""
        ...
