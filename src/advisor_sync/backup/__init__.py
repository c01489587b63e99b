"""
Disaster recovery: daily remote snapshots and manual export files.
"""

from advisor_sync.backup.export import build_export, import_export, read_export, write_export
from advisor_sync.backup.manager import BackupManager, BackupScheduler, format_time_since

__all__ = [
    "BackupManager",
    "BackupScheduler",
    "format_time_since",
    "build_export",
    "write_export",
    "read_export",
    "import_export",
]
