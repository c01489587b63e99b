"""
Sync orchestration: conflict resolution, debouncing and the engine.
"""

from advisor_sync.sync.conflict import ConflictResolver, Resolution, is_empty_blob
from advisor_sync.sync.connectivity import Connectivity
from advisor_sync.sync.debounce import BeaconDispatcher, Debouncer
from advisor_sync.sync.engine import SyncEngine

__all__ = [
    "ConflictResolver",
    "Resolution",
    "is_empty_blob",
    "Connectivity",
    "BeaconDispatcher",
    "Debouncer",
    "SyncEngine",
]
