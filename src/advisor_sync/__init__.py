"""
Advisor Sync - local/remote synchronization engine.

Keeps a profile-scoped local store and a per-user Supabase row consistent
across devices, tabs and network interruptions:
- LocalStore: profile-scoped key/value persistence with quota recovery
- TabBroadcaster: cross-tab "storage-update" notifications
- SyncEngine: conflict-aware pull, debounced push, bulk push
- BackupManager: daily snapshots with 14-day retention
"""

__version__ = "1.0.0"
