"""
Advisor Sync - Remote Store Access.

Protocols the engine consumes, plus their Supabase implementations.
"""

from advisor_sync.db.adapter import BackupStore, RemoteStore
from advisor_sync.db.client import get_client
from advisor_sync.db.remote import SupabaseBackupStore, SupabaseRemoteStore

__all__ = [
    "RemoteStore",
    "BackupStore",
    "get_client",
    "SupabaseRemoteStore",
    "SupabaseBackupStore",
]
