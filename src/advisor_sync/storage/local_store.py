"""
Profile-aware local storage for synchronized domains.

LocalStore is the device's authoritative copy. It:
- prefixes profile-scoped keys with the active profile id
- stamps every written blob so the conflict resolver can compare it
- recovers from quota exhaustion by pruning collections and retrying once
- notifies sibling tabs after every successful write

Stored format: each value is a JSON envelope
    {"format": 1, "stampedAt": "<iso>", "blob": <blob>}
so array blobs carry a write time too. Values written by older clients
(the bare blob) are still read; they simply have no implicit timestamp.
"""

import json
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Iterable

from advisor_sync.errors import QuotaExceededError
from advisor_sync.models import LocalRecord
from advisor_sync.registry import PROFILE_SCOPED_EXTRA_KEYS, REGISTRY, Domain, DomainRegistry
from advisor_sync.storage.backends import StorageBackend
from advisor_sync.storage.broadcast import TabBroadcaster
from advisor_sync.utils import parse_timestamp, to_iso, utc_now

logger = logging.getLogger(__name__)

ACTIVE_PROFILE_KEY = "health-advisor-active-profile"
DEFAULT_PROFILE_ID = "profile_main"
ENVELOPE_FORMAT = 1

# Timestamp fields that count as "already stamped"
STAMP_FIELDS = ("updatedAt", "updated_at")


def _is_envelope(value: Any) -> bool:
    return isinstance(value, dict) and value.get("format") == ENVELOPE_FORMAT and "blob" in value


def _truncate_entries(blob: Any, cap: int) -> tuple[Any, int] | None:
    """
    Keep the newest `cap` entries of a collection blob.

    Collections are either bare lists or objects with an "entries" list;
    entries are stored oldest-first. Returns (new_blob, old_count), or
    None when nothing needs truncating.
    """
    if isinstance(blob, list):
        entries = blob
    elif isinstance(blob, dict) and isinstance(blob.get("entries"), list):
        entries = blob["entries"]
    else:
        return None

    if len(entries) <= cap:
        return None

    pruned = entries[-cap:] if cap > 0 else []
    if isinstance(blob, list):
        return pruned, len(entries)
    return {**blob, "entries": pruned}, len(entries)


class PruningPolicy:
    """
    Frees local space by truncating unbounded collections.

    Args:
        caps: domain name -> maximum entries to keep
    """

    def __init__(self, caps: dict[str, int]):
        self.caps = dict(caps)

    def prune(self, store: "LocalStore") -> list[str]:
        """Truncate capped domains, largest first. Returns the pruned domains."""
        candidates = []
        for name, cap in self.caps.items():
            key = store.storage_key(name)
            raw = store.backend.get_item(key)
            if raw:
                candidates.append((len(raw), name, cap, key, raw))

        pruned_domains = []
        for _, name, cap, key, raw in sorted(candidates, key=lambda c: c[0], reverse=True):
            try:
                stored = json.loads(raw)
            except json.JSONDecodeError:
                continue

            inner = stored["blob"] if _is_envelope(stored) else stored
            result = _truncate_entries(inner, cap)
            if result is None:
                continue
            new_inner, old_count = result
            new_value = {**stored, "blob": new_inner} if _is_envelope(stored) else new_inner

            try:
                store.backend.set_item(key, json.dumps(new_value), source=store.tab_id)
            except QuotaExceededError as e:
                logger.warning(f"Failed to prune {name}: {e}")
                continue
            logger.info(f"Pruned {name} from {old_count} to {cap} entries")
            pruned_domains.append(name)

        return pruned_domains


class LocalStore:
    """
    Profile-scoped key/value store for domain blobs.

    Args:
        backend: Shared device storage
        broadcaster: Notified after every successful write (optional)
        registry: Domain mapping
        scoped_keys: Local keys isolated per profile. Keys outside this
            set are shared across profiles and stored unprefixed.
        default_profile_id: Profile used when none has been selected
        prune_caps: domain -> max entries, for quota recovery. Defaults
            to the registry caps.
        clock: Time source (tests)
    """

    def __init__(
        self,
        backend: StorageBackend,
        broadcaster: TabBroadcaster | None = None,
        registry: DomainRegistry = REGISTRY,
        scoped_keys: Iterable[str] | None = None,
        default_profile_id: str = DEFAULT_PROFILE_ID,
        prune_caps: dict[str, int] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.backend = backend
        self.broadcaster = broadcaster
        self.registry = registry
        self.tab_id = broadcaster.tab_id if broadcaster else uuid.uuid4().hex
        if scoped_keys is None:
            scoped_keys = set(registry.local_keys()) | PROFILE_SCOPED_EXTRA_KEYS
        self.scoped_keys = frozenset(scoped_keys)
        self.default_profile_id = default_profile_id
        if prune_caps is None:
            prune_caps = {spec.domain.value: spec.prune_cap for spec in registry if spec.prune_cap}
        self.pruning = PruningPolicy(prune_caps)
        self._clock = clock

    # -------------------------------------------------------------------------
    # Profiles and keys
    # -------------------------------------------------------------------------

    @property
    def active_profile_id(self) -> str:
        return self.backend.get_item(ACTIVE_PROFILE_KEY) or self.default_profile_id

    def switch_profile(self, profile_id: str) -> None:
        self.backend.set_item(ACTIVE_PROFILE_KEY, profile_id, source=self.tab_id)
        logger.info(f"Switched active profile to {profile_id}")

    def storage_key(self, domain: Domain | str) -> str:
        """Backend key for a domain: profile-prefixed when profile-scoped."""
        base_key = self.registry.get(domain).local_key
        if base_key in self.scoped_keys:
            return f"{self.active_profile_id}:{base_key}"
        return base_key

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_record(self, domain: Domain | str) -> LocalRecord | None:
        """
        Read a domain with its implicit timestamp.

        Unparseable values are treated as absent (logged, never raised).
        """
        name = self.registry.resolve(domain).value
        key = self.storage_key(domain)
        raw = self.backend.get_item(key)
        if raw is None:
            return None
        try:
            stored = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Malformed blob for {name} ({key}), treating as absent: {e}")
            return None

        if _is_envelope(stored):
            blob = stored["blob"]
            updated_at = parse_timestamp(stored.get("stampedAt"))
        else:
            blob = stored
            updated_at = None

        if isinstance(blob, dict) and updated_at is None:
            for field in STAMP_FIELDS:
                updated_at = parse_timestamp(blob.get(field))
                if updated_at is not None:
                    break

        return LocalRecord(domain=name, blob=blob, updated_at=updated_at)

    def get(self, domain: Domain | str) -> Any | None:
        record = self.get_record(domain)
        return record.blob if record is not None else None

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def set(self, domain: Domain | str, blob: Any, refresh_timestamp: bool = False) -> None:
        """
        Write a domain blob.

        Object blobs without an update stamp get `updatedAt` set to now;
        `refresh_timestamp=True` overwrites an existing stamp (user edits).

        Raises:
            QuotaExceededError: storage still full after pruning and one retry
        """
        name = self.registry.resolve(domain).value
        key = self.storage_key(domain)
        now = self._clock()

        if isinstance(blob, dict):
            if refresh_timestamp or not any(blob.get(f) for f in STAMP_FIELDS):
                blob = {**blob, "updatedAt": to_iso(now)}

        value = json.dumps({"format": ENVELOPE_FORMAT, "stampedAt": to_iso(now), "blob": blob})

        try:
            self.backend.set_item(key, value, source=self.tab_id)
        except QuotaExceededError:
            logger.warning(f"Storage quota exceeded for {name}. Attempting to prune...")
            self.pruning.prune(self)
            try:
                self.backend.set_item(key, value, source=self.tab_id)
            except QuotaExceededError:
                logger.error(f"Still exceeded quota after pruning for {name}")
                raise
            logger.info(f"Saved {name} after pruning")

        if self.broadcaster is not None:
            self.broadcaster.publish(name)

    def remove(self, domain: Domain | str) -> None:
        name = self.registry.resolve(domain).value
        self.backend.remove_item(self.storage_key(domain), source=self.tab_id)
        if self.broadcaster is not None:
            self.broadcaster.publish(name)

    # -------------------------------------------------------------------------
    # Access by local key name (restore / import)
    # -------------------------------------------------------------------------

    def _raw_key(self, local_key: str) -> str:
        if local_key in self.scoped_keys:
            return f"{self.active_profile_id}:{local_key}"
        return local_key

    def get_raw(self, local_key: str) -> Any | None:
        """Read a value by its local key; registered domains go through get()."""
        if local_key in self.registry.local_keys():
            return self.get(self.registry.by_local_key(local_key).domain)
        raw = self.backend.get_item(self._raw_key(local_key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Malformed value for {local_key}, treating as absent")
            return None

    def set_raw(self, local_key: str, value: Any, refresh_timestamp: bool = False) -> None:
        """Write a value by its local key; registered domains go through set()."""
        if local_key in self.registry.local_keys():
            self.set(self.registry.by_local_key(local_key).domain, value, refresh_timestamp=refresh_timestamp)
            return
        self.backend.set_item(self._raw_key(local_key), json.dumps(value), source=self.tab_id)

    def snapshot(self) -> dict[str, Any]:
        """All present domain blobs, keyed by local key."""
        data = {}
        for spec in self.registry:
            blob = self.get(spec.domain)
            if blob is not None:
                data[spec.local_key] = blob
        return data
