"""
Advisor Sync - Result and message models.

Every public engine operation returns one of these instead of raising,
so the host can render status without wrapping calls in try/except.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from advisor_sync.errors import ErrorKind


STORAGE_UPDATE = "storage-update"


class SyncStatus(str, Enum):
    """SyncEngine lifecycle states."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass
class LocalRecord:
    """A domain blob as held by the local device, with its write stamp."""

    domain: str
    blob: Any
    updated_at: datetime | None = None


# =============================================================================
# Cross-tab wire format
# =============================================================================


class StorageUpdateMessage(BaseModel):
    """
    The only message sent between tabs.

    Carries no payload: receivers re-read the domain from LocalStore.
    """

    type: Literal["storage-update"] = STORAGE_UPDATE
    domain: str


# =============================================================================
# Sync results
# =============================================================================


class OperationResult(BaseModel):
    """Common shape: success flag plus an optional classified error."""

    success: bool
    error: str | None = None
    error_kind: ErrorKind | None = None


class PushResult(OperationResult):
    """Result of pushing one domain."""

    domain: str | None = None
    skipped: bool = False   # Nothing to push, or not authenticated
    deferred: bool = False  # Offline; replayed on reconnect


class PullResult(OperationResult):
    """
    Result of a full pull.

    Domains are partitioned into:
    - loaded: remote won, local overwritten
    - preserved: local won
    - pushed: preserved and successfully re-asserted to remote
    - unchanged: local and remote already identical, nothing written
    - errors: per-domain failure messages
    """

    loaded: list[str] = Field(default_factory=list)
    preserved: list[str] = Field(default_factory=list)
    pushed: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    record_found: bool = True


class PushAllResult(OperationResult):
    """Result of a bulk push."""

    synced: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class SyncState(BaseModel):
    """Snapshot of engine state for the host UI."""

    status: SyncStatus
    last_synced: datetime | None = None
    is_offline: bool = False
    remote_unreachable: bool = False
    error: str | None = None
    pending: list[str] = Field(default_factory=list)
    deferred: list[str] = Field(default_factory=list)


# =============================================================================
# Backups
# =============================================================================


class BackupResult(OperationResult):
    """Result of a backup attempt."""

    backup_date: str | None = None
    domains: list[str] = Field(default_factory=list)
    skipped: bool = False


class BackupInfo(BaseModel):
    """One available snapshot, for a restore picker."""

    date: str
    created_at: str | None = None


class BackupListResult(OperationResult):
    backups: list[BackupInfo] = Field(default_factory=list)


class RestoreResult(OperationResult):
    """Result of restoring a snapshot or an export file."""

    restored: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
