"""
Local persistence and cross-tab notification.
"""

from advisor_sync.storage.backends import MemoryBackend, SqliteBackend, StorageBackend
from advisor_sync.storage.broadcast import BroadcastChannel, ChannelHub, TabBroadcaster, default_hub
from advisor_sync.storage.local_store import ACTIVE_PROFILE_KEY, LocalStore, PruningPolicy

__all__ = [
    "StorageBackend",
    "MemoryBackend",
    "SqliteBackend",
    "BroadcastChannel",
    "ChannelHub",
    "TabBroadcaster",
    "default_hub",
    "LocalStore",
    "PruningPolicy",
    "ACTIVE_PROFILE_KEY",
]
