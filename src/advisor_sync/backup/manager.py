"""
Daily remote snapshots of all local domains.

BackupManager is independent of the sync engine: it keeps working when
live sync is failing and is the recovery path when local storage itself
is lost or corrupted. At most one snapshot exists per user per calendar
day (upsert), and each successful write is followed by a retention sweep.

Backup failures are logged and swallowed. They are never shown to the
user and never block the action that triggered them.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

from advisor_sync.auth import AuthProvider
from advisor_sync.db.adapter import BackupStore
from advisor_sync.errors import ErrorKind, classify_error
from advisor_sync.models import BackupInfo, BackupListResult, BackupResult, RestoreResult
from advisor_sync.registry import REGISTRY, DomainRegistry
from advisor_sync.storage.local_store import LocalStore
from advisor_sync.sync.connectivity import Connectivity
from advisor_sync.sync.debounce import BeaconDispatcher
from advisor_sync.utils import parse_timestamp, to_iso, today_iso, utc_now

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 14
DEFAULT_INTERVAL_SECONDS = 30 * 60
DEFAULT_TIMEOUT_SECONDS = 30.0


def format_time_since(then: datetime | None, now: datetime) -> str:
    """Human-readable age: "never", "just now", "5m ago", "3h ago", "2d ago"."""
    if then is None:
        return "never"
    seconds = (now - then).total_seconds()
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{int(seconds // 60)}m ago"
    if seconds < 86400:
        return f"{int(seconds // 3600)}h ago"
    return f"{int(seconds // 86400)}d ago"


class BackupManager:
    """
    Creates, lists and restores date-keyed snapshots.

    Args:
        local: Source (create) and destination (restore) of domain blobs
        store: Remote snapshot table
        auth: Supplies the current user id
        registry: Domain mapping; snapshot keys are local keys
        retention_days: Snapshots older than this are swept
        timeout: Bound on every backup store call, in seconds
        clock: Time source (tests)
    """

    def __init__(
        self,
        local: LocalStore,
        store: BackupStore,
        auth: AuthProvider,
        registry: DomainRegistry = REGISTRY,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.local = local
        self.store = store
        self.auth = auth
        self.registry = registry
        self.retention_days = retention_days
        self.timeout = timeout
        self._clock = clock
        self.last_backup_at: datetime | None = None

    async def _call(self, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise asyncio.TimeoutError(f"Backup store timeout after {self.timeout}s") from e

    def gather(self) -> dict:
        """Every present domain blob, keyed by local key."""
        data = {}
        for spec in self.registry:
            try:
                blob = self.local.get(spec.domain)
            except Exception as e:
                logger.warning(f"Failed to read {spec.local_key}: {e}")
                continue
            if blob is not None:
                data[spec.local_key] = blob
        return data

    async def create_backup(self) -> BackupResult:
        """Upsert today's snapshot, then sweep expired ones."""
        user_id = self.auth.current_user_id()
        if not user_id:
            logger.info("No user logged in, skipping backup")
            return BackupResult(
                success=False,
                error="Not authenticated",
                error_kind=ErrorKind.NOT_AUTHENTICATED,
                skipped=True,
            )

        data = self.gather()
        if not data:
            logger.info("No data to backup")
            return BackupResult(success=True, skipped=True)

        now = self._clock()
        today = today_iso(now)
        logger.info(f"Creating backup for {today}...")

        try:
            await self._call(self.store.upsert_backup({
                "user_id": user_id,
                "backup_date": today,
                "backup_data": data,
                "created_at": to_iso(now),
            }))
        except Exception as e:
            logger.error(f"Failed to create backup: {e}")
            return BackupResult(
                success=False,
                error=str(e),
                error_kind=classify_error(e),
                backup_date=today,
            )

        self.last_backup_at = now
        logger.info(f"Backup saved for {today}")

        await self._cleanup(user_id, now)

        return BackupResult(success=True, backup_date=today, domains=list(data))

    async def _cleanup(self, user_id: str, now: datetime) -> None:
        cutoff = today_iso(now - timedelta(days=self.retention_days))
        try:
            await self._call(self.store.delete_backups_before(user_id, cutoff))
        except Exception as e:
            logger.warning(f"Failed to cleanup old backups: {e}")
            return
        logger.info(f"Cleaned up backups older than {cutoff}")

    async def list_backups(self) -> BackupListResult:
        """Available snapshots, newest first."""
        user_id = self.auth.current_user_id()
        if not user_id:
            return BackupListResult(
                success=False,
                error="Not authenticated",
                error_kind=ErrorKind.NOT_AUTHENTICATED,
            )

        try:
            rows = await self._call(self.store.list_backups(user_id))
        except Exception as e:
            logger.error(f"Failed to list backups: {e}")
            return BackupListResult(success=False, error=str(e), error_kind=classify_error(e))

        backups = [
            BackupInfo(date=row["backup_date"], created_at=row.get("created_at"))
            for row in rows
        ]
        backups.sort(key=lambda b: b.date, reverse=True)

        if self.last_backup_at is None and backups:
            self.last_backup_at = parse_timestamp(backups[0].created_at)

        logger.info(f"Found {len(backups)} backups")
        return BackupListResult(success=True, backups=backups)

    async def restore_from_backup(self, backup_date: str) -> RestoreResult:
        """
        Write every domain in a snapshot back into LocalStore.

        Restored blobs are stamped as fresh local edits so the next pull
        keeps them and pushes them to the remote record. Keys that are not
        registered domains are skipped.
        """
        user_id = self.auth.current_user_id()
        if not user_id:
            return RestoreResult(
                success=False,
                error="Not authenticated",
                error_kind=ErrorKind.NOT_AUTHENTICATED,
            )

        logger.info(f"Restoring from {backup_date}...")
        try:
            data = await self._call(self.store.fetch_backup(user_id, backup_date))
        except Exception as e:
            logger.error(f"Failed to fetch backup: {e}")
            return RestoreResult(success=False, error=str(e), error_kind=classify_error(e))

        if not data:
            return RestoreResult(success=False, error="Backup is empty")

        result = restore_blobs(self.local, data, self.registry)
        logger.info(f"Restored {len(result.restored)} items from {backup_date}")
        return result

    def time_since_last_backup(self) -> str:
        return format_time_since(self.last_backup_at, self._clock())


def restore_blobs(local: LocalStore, data: dict, registry: DomainRegistry = REGISTRY) -> RestoreResult:
    """Write {local_key: blob} into the active profile. Shared with file import."""
    result = RestoreResult(success=True)
    for key, blob in data.items():
        if key not in registry.local_keys():
            logger.debug(f"Skipping unknown backup key {key}")
            continue
        try:
            local.set_raw(key, blob, refresh_timestamp=True)
        except Exception as e:
            logger.warning(f"Failed to restore {key}: {e}")
            result.failed.append(key)
            continue
        result.restored.append(key)
    return result


class BackupScheduler:
    """
    Drives BackupManager from host events and a periodic timer.

    Triggers: every `interval` seconds, visibility loss, page hide and
    reconnection after being offline.
    """

    def __init__(
        self,
        manager: BackupManager,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        connectivity: Connectivity | None = None,
        dispatcher: BeaconDispatcher | None = None,
    ):
        self.manager = manager
        self.interval = interval
        self.connectivity = connectivity
        self.dispatcher = dispatcher or BeaconDispatcher()
        self._task: asyncio.Task | None = None
        self._was_offline = False
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the periodic loop. Needs a running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="backup:periodic")
        if self.connectivity is not None and self._unsubscribe is None:
            self._was_offline = self.connectivity.offline
            self._unsubscribe = self.connectivity.subscribe(self._on_connectivity_change)
        logger.info(f"Backup scheduler started (every {self.interval:.0f}s)")

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Backup scheduler stopped")

    def trigger(self, reason: str) -> asyncio.Task | None:
        """Fire-and-forget backup."""
        logger.debug(f"Backup triggered: {reason}")
        return self.dispatcher.dispatch(self.manager.create_backup, name=f"backup:{reason}")

    def on_visibility_hidden(self) -> asyncio.Task | None:
        return self.trigger("hidden")

    def on_page_hide(self) -> asyncio.Task | None:
        return self.trigger("pagehide")

    def _on_connectivity_change(self, online: bool) -> None:
        if not online:
            self._was_offline = True
            return
        if self._was_offline:
            self._was_offline = False
            self.trigger("reconnect")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.manager.create_backup()
            except Exception:
                logger.exception("Periodic backup failed")
