"""
Advisor Sync - Runtime wiring.

SyncRuntime is one "tab": a LocalStore over the shared device backend,
its TabBroadcaster, the SyncEngine, and the backup manager/scheduler,
connected to the host's lifecycle events.

Host events:
- start()                 subscribe to sibling updates, start backups, initial pull
- on_visibility_hidden()  flush pending pushes and snapshot (best effort)
- on_page_hide()          same, for page teardown
- set_online(bool)        connectivity transitions
- stop()                  orderly shutdown
"""

import logging
from pathlib import Path
from typing import Callable

from advisor_sync.auth import AuthProvider, StaticAuthProvider, SupabaseAuthProvider
from advisor_sync.backup.manager import BackupManager, BackupScheduler
from advisor_sync.config import SyncSettings, get_settings
from advisor_sync.db.adapter import BackupStore, RemoteStore
from advisor_sync.models import PullResult
from advisor_sync.registry import REGISTRY, DomainRegistry
from advisor_sync.storage.backends import SqliteBackend, StorageBackend
from advisor_sync.storage.broadcast import ChannelHub, TabBroadcaster, default_hub
from advisor_sync.storage.local_store import LocalStore
from advisor_sync.sync.conflict import ConflictResolver
from advisor_sync.sync.connectivity import Connectivity
from advisor_sync.sync.debounce import BeaconDispatcher
from advisor_sync.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

# Upper bound on waiting for in-flight work at shutdown
SHUTDOWN_DRAIN_SECONDS = 5.0

ReloadCallback = Callable[[str], None]


class SyncRuntime:
    """A fully wired tab. Build with create() or from_settings()."""

    def __init__(
        self,
        local: LocalStore,
        broadcaster: TabBroadcaster,
        engine: SyncEngine,
        backups: BackupManager,
        scheduler: BackupScheduler,
        on_remote_change: ReloadCallback | None = None,
    ):
        self.local = local
        self.broadcaster = broadcaster
        self.engine = engine
        self.backups = backups
        self.scheduler = scheduler
        self.on_remote_change = on_remote_change
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def connectivity(self) -> Connectivity:
        return self.engine.connectivity

    @property
    def dispatcher(self) -> BeaconDispatcher:
        return self.engine.dispatcher

    @classmethod
    def create(
        cls,
        backend: StorageBackend,
        remote: RemoteStore,
        backup_store: BackupStore,
        auth: AuthProvider,
        settings: SyncSettings | None = None,
        hub: ChannelHub | None = None,
        registry: DomainRegistry = REGISTRY,
        on_remote_change: ReloadCallback | None = None,
    ) -> "SyncRuntime":
        """Compose a runtime from explicit stores (tests, custom hosts)."""
        settings = settings or get_settings()
        hub = hub or default_hub

        broadcaster = TabBroadcaster(
            channel=hub.open(settings.broadcast_channel),
            backend=backend,
            registry=registry,
        )
        local = LocalStore(
            backend,
            broadcaster=broadcaster,
            registry=registry,
            default_profile_id=settings.default_profile_id,
            prune_caps=settings.prune_caps,
        )
        connectivity = Connectivity()
        dispatcher = BeaconDispatcher()
        engine = SyncEngine(
            local,
            remote,
            auth,
            registry=registry,
            resolver=ConflictResolver(registry, settings.profile_critical_fields),
            connectivity=connectivity,
            debounce_seconds=settings.debounce_seconds,
            timeout=settings.remote_timeout_seconds,
            dispatcher=dispatcher,
        )
        backups = BackupManager(
            local,
            backup_store,
            auth,
            registry=registry,
            retention_days=settings.backup_retention_days,
            timeout=settings.remote_timeout_seconds,
        )
        scheduler = BackupScheduler(
            backups,
            interval=settings.backup_interval_minutes * 60,
            connectivity=connectivity,
            dispatcher=dispatcher,
        )
        return cls(local, broadcaster, engine, backups, scheduler, on_remote_change)

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings | None = None,
        backend: StorageBackend | None = None,
        user_id: str | None = None,
        on_remote_change: ReloadCallback | None = None,
    ) -> "SyncRuntime":
        """
        Supabase-backed runtime.

        Uses the SQLite backend at `local_db_path` unless one is given. The
        user is fixed when `user_id` (or `dev_user_id`) is set, and is read
        from the Supabase session otherwise.
        """
        from advisor_sync.db.client import get_client
        from advisor_sync.db.remote import SupabaseBackupStore, SupabaseRemoteStore

        settings = settings or get_settings()
        if backend is None:
            path = Path(settings.local_db_path).expanduser()
            backend = SqliteBackend(path, capacity_bytes=settings.local_quota_bytes)

        client = get_client()
        user_id = user_id or settings.dev_user_id
        if user_id:
            auth: AuthProvider = StaticAuthProvider(user_id)
        else:
            auth = SupabaseAuthProvider(client)

        return cls.create(
            backend,
            SupabaseRemoteStore(client, settings.profile_table),
            SupabaseBackupStore(client, settings.backup_table),
            auth,
            settings=settings,
            on_remote_change=on_remote_change,
        )

    # =========================================================================
    # Host lifecycle
    # =========================================================================

    async def start(self) -> PullResult:
        if self._unsubscribe is None:
            self._unsubscribe = self.broadcaster.subscribe(self._on_sibling_update)
        self.scheduler.start()
        return await self.engine.start_session()

    def on_visibility_hidden(self) -> list[str]:
        flushed = self.engine.flush_all()
        self.scheduler.on_visibility_hidden()
        return flushed

    def on_page_hide(self) -> list[str]:
        flushed = self.engine.flush_all()
        self.scheduler.on_page_hide()
        return flushed

    def set_online(self, online: bool) -> None:
        self.connectivity.set_online(online)

    def handle_auth_change(self, user_id: str | None) -> None:
        self.engine.handle_auth_change(user_id)

    async def stop(self) -> None:
        self.engine.flush_all()
        await self.scheduler.stop()
        await self.dispatcher.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.engine.close()
        self.broadcaster.close()
        logger.info("Sync runtime stopped")

    def _on_sibling_update(self, domain: str) -> None:
        # Sibling tab wrote this domain; re-read locally, never refetch
        logger.debug(f"Sibling tab updated {domain}")
        if self.on_remote_change is not None:
            self.on_remote_change(domain)
