"""
Sync engine: orchestration between LocalStore and the remote store.

SyncEngine runs the full pull (remote -> local, conflict-aware), single
domain pushes, and bulk pushes, and exposes a small state machine to the
host:

    idle --start_session/pull--> loading --ok--> ready
                                   |  \\--fail--> error
    ready/error --refresh/pull--> loading
    any --sign-out--> idle

Every public operation returns a result model. Expected failures (not
signed in, offline, backend down, rejected writes) never raise.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable

from advisor_sync.db.adapter import RemoteStore
from advisor_sync.auth import AuthProvider
from advisor_sync.errors import ErrorKind, QuotaExceededError, classify_error, is_network_error
from advisor_sync.models import PullResult, PushAllResult, PushResult, SyncState, SyncStatus
from advisor_sync.registry import REGISTRY, Domain, DomainRegistry, DomainSpec
from advisor_sync.storage.local_store import LocalStore
from advisor_sync.sync.conflict import ConflictResolver, is_empty_blob
from advisor_sync.sync.connectivity import Connectivity
from advisor_sync.sync.debounce import DEFAULT_DEBOUNCE_SECONDS, BeaconDispatcher, Debouncer
from advisor_sync.utils import to_iso, utc_now

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

_TRANSITIONS: dict[SyncStatus, set[SyncStatus]] = {
    SyncStatus.IDLE: {SyncStatus.LOADING},
    SyncStatus.LOADING: {SyncStatus.READY, SyncStatus.ERROR, SyncStatus.IDLE},
    SyncStatus.READY: {SyncStatus.LOADING, SyncStatus.IDLE},
    SyncStatus.ERROR: {SyncStatus.LOADING, SyncStatus.IDLE},
}

StatusCallback = Callable[[SyncStatus], None]


class SyncEngine:
    """
    Orchestrates pull, push and bulk push for one tab.

    Args:
        local: The tab's LocalStore
        remote: Per-user remote record store
        auth: Supplies the current user id (None = signed out)
        registry: Domain mapping
        resolver: Conflict arbitration (default: generic critical fields)
        connectivity: Host-reported online state
        debounce_seconds: Quiet interval for scheduled pushes
        timeout: Bound on every remote call, in seconds
        dispatcher: Fire-and-forget primitive shared with the debouncer
        clock: Time source (tests)
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        auth: AuthProvider,
        registry: DomainRegistry = REGISTRY,
        resolver: ConflictResolver | None = None,
        connectivity: Connectivity | None = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        dispatcher: BeaconDispatcher | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.local = local
        self.remote = remote
        self.auth = auth
        self.registry = registry
        self.resolver = resolver or ConflictResolver(registry)
        self.connectivity = connectivity or Connectivity()
        self.timeout = timeout
        self.dispatcher = dispatcher or BeaconDispatcher()
        self.debouncer = Debouncer(self._debounced_push, debounce_seconds, self.dispatcher)
        self._clock = clock

        self._status = SyncStatus.IDLE
        self._status_callbacks: list[StatusCallback] = []
        self._last_synced: datetime | None = None
        self._last_error: str | None = None
        self._remote_unreachable = False
        self._deferred: set[str] = set()

        # Session-once guard for the initial pull
        self._session_user: str | None = None
        self._session_loaded = False
        self._last_pull: PullResult | None = None
        self._pull_task: asyncio.Task | None = None

        self._unsubscribe_connectivity = self.connectivity.subscribe(self._on_connectivity_change)

    # =========================================================================
    # State
    # =========================================================================

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def last_synced(self) -> datetime | None:
        return self._last_synced

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def is_offline(self) -> bool:
        return self.connectivity.offline

    @property
    def remote_unreachable(self) -> bool:
        return self._remote_unreachable

    @property
    def deferred(self) -> frozenset[str]:
        return frozenset(self._deferred)

    def state(self) -> SyncState:
        return SyncState(
            status=self._status,
            last_synced=self._last_synced,
            is_offline=self.is_offline,
            remote_unreachable=self._remote_unreachable,
            error=self._last_error,
            pending=sorted(self.debouncer.pending),
            deferred=sorted(self._deferred),
        )

    def on_status_change(self, callback: StatusCallback) -> Callable[[], None]:
        self._status_callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._status_callbacks:
                self._status_callbacks.remove(callback)

        return unsubscribe

    def _set_status(self, status: SyncStatus) -> None:
        if status == self._status:
            return
        if status not in _TRANSITIONS[self._status]:
            raise RuntimeError(f"Illegal sync transition {self._status.value} -> {status.value}")
        logger.debug(f"Sync status {self._status.value} -> {status.value}")
        self._status = status
        for callback in list(self._status_callbacks):
            try:
                callback(status)
            except Exception as e:
                logger.error(f"Status callback failed: {e}")

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    async def start_session(self) -> PullResult:
        """
        Initial pull, at most once per authenticated session.

        Remounts and repeated calls return the cached result; only
        refresh() or an auth change re-arms the pull.
        """
        user_id = self.auth.current_user_id()
        if not user_id:
            return _not_authenticated_pull()

        if self._session_loaded and self._session_user == user_id:
            logger.info("Already loaded this session, skipping")
            return self._last_pull or PullResult(success=True)

        return await self.pull()

    async def refresh(self) -> PullResult:
        """Explicit re-pull; re-arms the session guard."""
        self._session_loaded = False
        return await self.pull()

    def handle_auth_change(self, user_id: str | None) -> None:
        """Reset session state on sign-in/sign-out transitions."""
        if user_id == self._session_user:
            return
        logger.info("Auth changed, resetting sync session")
        self._session_user = user_id
        self._session_loaded = False
        self._last_pull = None
        self._last_error = None
        self._remote_unreachable = False
        if user_id is None:
            self.debouncer.cancel_all()
            self._deferred.clear()
            self._set_status(SyncStatus.IDLE)

    def close(self) -> None:
        self.debouncer.cancel_all()
        self._unsubscribe_connectivity()

    # =========================================================================
    # Pull
    # =========================================================================

    async def pull(self) -> PullResult:
        """
        Fetch the remote record and reconcile every domain.

        Bounded by the engine timeout. Concurrent callers share one
        in-flight pull.
        """
        user_id = self.auth.current_user_id()
        if not user_id:
            logger.info("No user ID, skipping load")
            return _not_authenticated_pull()

        if self._pull_task is not None and not self._pull_task.done():
            return await asyncio.shield(self._pull_task)

        self._pull_task = asyncio.ensure_future(self._run_pull(user_id))
        return await asyncio.shield(self._pull_task)

    async def _run_pull(self, user_id: str) -> PullResult:
        self._set_status(SyncStatus.LOADING)
        self._last_error = None

        try:
            result = await asyncio.wait_for(self._pull_domains(user_id), timeout=self.timeout)
        except asyncio.TimeoutError:
            message = f"Remote fetch timeout after {self.timeout}s"
            logger.warning(message)
            result = PullResult(
                success=False,
                error=message,
                error_kind=classify_error(asyncio.TimeoutError(message), self.connectivity.online),
                errors=[message],
            )

        if self._status is not SyncStatus.LOADING:
            # Signed out while the pull was in flight
            return result

        if result.success:
            self._last_synced = self._clock()
            self._remote_unreachable = False
            self._session_user = user_id
            self._session_loaded = True
            self._last_pull = result
            self._set_status(SyncStatus.READY)
            logger.info(
                f"Sync complete. Loaded: {len(result.loaded)}, "
                f"Preserved: {len(result.preserved)}, Pushed: {len(result.pushed)}"
            )
        else:
            error_str = result.error or ", ".join(result.errors)
            if is_network_error(error_str) and self.connectivity.online:
                self._remote_unreachable = True
                logger.warning("Remote store appears to be down")
            self._last_error = error_str
            self._set_status(SyncStatus.ERROR)
            logger.error(f"Load failed: {error_str}")

        return result

    async def _pull_domains(self, user_id: str) -> PullResult:
        if self.connectivity.offline:
            return PullResult(
                success=False,
                error="Offline",
                error_kind=ErrorKind.NETWORK_UNAVAILABLE,
                errors=["Offline"],
            )

        logger.info("Loading all data from remote (with conflict resolution)...")
        try:
            record = await self.remote.fetch_user_record(user_id, self.registry.remote_fields())
        except Exception as e:
            kind = classify_error(e, self.connectivity.online)
            return PullResult(success=False, error=str(e), error_kind=kind, errors=[str(e)])

        if record is None:
            logger.info("No remote record found (new user)")
            return PullResult(success=True, record_found=False)

        result = PullResult(success=True)
        for spec in self.registry:
            name = spec.domain.value
            try:
                await self._reconcile(user_id, spec, record.get(spec.remote_field), result)
            except QuotaExceededError as e:
                logger.error(f"Local storage full, could not load {name}: {e}")
                result.errors.append(f"Failed to process {name}: {e}")
            except Exception as e:
                logger.warning(f"Failed to process {name}: {e}")
                result.errors.append(f"Failed to process {name}: {e}")

        return result

    async def _reconcile(self, user_id: str, spec: DomainSpec, remote_blob: Any, result: PullResult) -> None:
        name = spec.domain.value
        record = self.local.get_record(spec.domain)
        local_blob = record.blob if record is not None else None

        if is_empty_blob(local_blob) and is_empty_blob(remote_blob):
            return
        if local_blob == remote_blob:
            result.unchanged.append(name)
            return

        resolution = self.resolver.resolve(
            spec.domain,
            local_blob,
            remote_blob,
            record.updated_at if record is not None else None,
        )

        if resolution.use_local:
            logger.debug(f"Preserved local {name} ({resolution.reason}), pushing to remote")
            result.preserved.append(name)
            push_result = await self._push_blob(user_id, spec, local_blob)
            if push_result.success:
                result.pushed.append(name)
            else:
                result.errors.append(f"Failed to push {name}: {push_result.error}")
        else:
            logger.debug(f"Loaded {name} from {spec.remote_field} ({resolution.reason})")
            self.local.set(spec.domain, remote_blob)
            result.loaded.append(name)

    # =========================================================================
    # Push
    # =========================================================================

    async def push(self, domain: Domain | str) -> PushResult:
        """
        Push one domain's local blob to its remote column.

        Not signed in or nothing stored: success, skipped.
        Offline: success, deferred until reconnect.
        """
        spec = self.registry.get(domain)
        name = spec.domain.value

        user_id = self.auth.current_user_id()
        if not user_id:
            # Not logged in - data stays local
            return PushResult(success=True, domain=name, skipped=True)

        if self.connectivity.offline:
            self._deferred.add(name)
            return PushResult(success=True, domain=name, deferred=True)

        blob = self.local.get(spec.domain)
        if blob is None:
            self._deferred.discard(name)
            logger.debug(f"No data in {name}, skipping")
            return PushResult(success=True, domain=name, skipped=True)

        return await self._push_blob(user_id, spec, blob)

    async def _push_blob(self, user_id: str, spec: DomainSpec, blob: Any) -> PushResult:
        name = spec.domain.value
        fields = {
            spec.remote_field: blob,
            "updated_at": to_iso(self._clock()),
        }
        try:
            await asyncio.wait_for(self.remote.update_user_record(user_id, fields), timeout=self.timeout)
        except Exception as e:
            kind = classify_error(e, self.connectivity.online)
            if kind is ErrorKind.REMOTE_UNREACHABLE:
                self._remote_unreachable = True
            elif kind is ErrorKind.NETWORK_UNAVAILABLE:
                self._deferred.add(name)
            logger.warning(f"Failed to sync {name}: {e}")
            return PushResult(success=False, domain=name, error=str(e) or type(e).__name__, error_kind=kind)

        self._remote_unreachable = False
        self._deferred.discard(name)
        logger.debug(f"Synced {name} -> {spec.remote_field}")
        return PushResult(success=True, domain=name)

    async def push_all(self) -> PushAllResult:
        """
        Push every non-empty domain in a single remote update.

        Used for bulk operations such as first-time migration of existing
        local data into a freshly created remote record.
        """
        user_id = self.auth.current_user_id()
        if not user_id:
            return PushAllResult(
                success=False,
                error="Not authenticated",
                error_kind=ErrorKind.NOT_AUTHENTICATED,
                errors=["Not authenticated"],
            )
        if self.connectivity.offline:
            return PushAllResult(
                success=False,
                error="Offline",
                error_kind=ErrorKind.NETWORK_UNAVAILABLE,
                errors=["Offline"],
            )

        logger.info("Syncing all data to remote...")
        updates: dict[str, Any] = {}
        synced: list[str] = []
        errors: list[str] = []

        for spec in self.registry:
            try:
                blob = self.local.get(spec.domain)
            except Exception as e:
                errors.append(f"Failed to read {spec.domain.value}: {e}")
                continue
            if not is_empty_blob(blob):
                updates[spec.remote_field] = blob
                synced.append(spec.domain.value)

        if not updates:
            logger.info("No data to sync")
            return PushAllResult(success=True, errors=errors)

        updates["updated_at"] = to_iso(self._clock())
        try:
            await asyncio.wait_for(self.remote.update_user_record(user_id, updates), timeout=self.timeout)
        except Exception as e:
            kind = classify_error(e, self.connectivity.online)
            if kind is ErrorKind.REMOTE_UNREACHABLE:
                self._remote_unreachable = True
            logger.error(f"Sync all failed: {e}")
            return PushAllResult(success=False, error=str(e), error_kind=kind, errors=errors + [str(e)])

        self._last_synced = self._clock()
        self._remote_unreachable = False
        self._deferred.difference_update(synced)
        logger.info(f"Synced {len(synced)} data types to remote")
        return PushAllResult(success=True, synced=synced, errors=errors)

    # =========================================================================
    # Debounced push
    # =========================================================================

    def schedule_debounced(self, domain: Domain | str) -> None:
        """Coalesce rapid writes into one push after the quiet interval."""
        self.debouncer.schedule(self.registry.resolve(domain).value)

    def push_soon(self, domain: Domain | str) -> None:
        """Fire-and-forget push with no quiet interval (critical changes)."""
        self.debouncer.schedule_immediate(self.registry.resolve(domain).value)

    def flush_all(self) -> list[str]:
        """Dispatch every pending push now, without awaiting (teardown)."""
        return self.debouncer.flush_all()

    async def _debounced_push(self, domain: str) -> PushResult:
        return await self.push(domain)

    # =========================================================================
    # Connectivity
    # =========================================================================

    def _on_connectivity_change(self, online: bool) -> None:
        if not online:
            return

        self._remote_unreachable = False
        # Each name leaves the deferred set when its push lands
        deferred = sorted(self._deferred)
        for name in deferred:
            self.debouncer.schedule_immediate(name)
        if deferred:
            logger.info(f"Resuming {len(deferred)} deferred syncs")

        if self._status is SyncStatus.ERROR and not self._session_loaded and self.auth.current_user_id():
            self.dispatcher.dispatch(self.pull, name="pull:reconnect")


def _not_authenticated_pull() -> PullResult:
    return PullResult(
        success=False,
        error="Not authenticated",
        error_kind=ErrorKind.NOT_AUTHENTICATED,
        errors=["Not authenticated"],
    )
