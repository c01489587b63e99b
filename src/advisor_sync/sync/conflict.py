"""
Conflict resolution between a local and a remote domain blob.

A pure decision function applied once per domain per pull. The ladder is
biased toward the local copy: the device is where the user is working,
so remote wins only when it is provably not older and not less complete.

Ladder (first match wins):
1. remote empty, local not      -> local
2. local empty                   -> remote
3. calibration domains           -> local if it has more completed days,
                                    or is complete while remote is not
4. profile domain                -> local if it holds a critical field
                                    the remote copy lacks
5. timestamps                    -> local if local >= remote; if older,
                                    local still wins with strictly more
                                    meaningful fields
6. no timestamps                 -> local
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from advisor_sync.registry import REGISTRY, ConflictRule, Domain, DomainRegistry
from advisor_sync.utils import parse_timestamp

logger = logging.getLogger(__name__)

# Checked in order; the first parseable one is the blob's timestamp
TIMESTAMP_FIELDS = ("updatedAt", "updated_at", "completedAt", "createdAt", "created_at")

# Keys that describe a blob rather than hold user data
METADATA_FIELDS = frozenset({
    "id",
    "updatedAt",
    "updated_at",
    "createdAt",
    "created_at",
    "completedAt",
    "startedAt",
})


@dataclass(frozen=True)
class Resolution:
    """Outcome of a conflict check."""

    use_local: bool
    reason: str

    @property
    def use_remote(self) -> bool:
        return not self.use_local


# =============================================================================
# Blob inspection helpers
# =============================================================================


def _is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, dict, tuple, set)) and len(value) == 0:
        return True
    return False


def is_empty_blob(blob: Any) -> bool:
    """None, empty containers, and objects holding only metadata are empty."""
    if _is_empty_value(blob):
        return True
    if isinstance(blob, dict):
        return count_meaningful_fields(blob) == 0
    return False


def count_meaningful_fields(blob: Any) -> int:
    """Non-metadata, non-empty fields of an object; non-empty items of a list."""
    if isinstance(blob, dict):
        return sum(
            1
            for key, value in blob.items()
            if key not in METADATA_FIELDS and not _is_empty_value(value)
        )
    if isinstance(blob, list):
        return sum(1 for item in blob if not _is_empty_value(item))
    return 0 if _is_empty_value(blob) else 1


def extract_timestamp(blob: Any) -> datetime | None:
    if not isinstance(blob, dict):
        return None
    for field in TIMESTAMP_FIELDS:
        ts = parse_timestamp(blob.get(field))
        if ts is not None:
            return ts
    return None


def count_completed_days(blob: Any) -> int:
    """Days marked completed in a calibration blob's `days` map (or list)."""
    if not isinstance(blob, dict):
        return 0
    days = blob.get("days")
    if isinstance(days, dict):
        days = days.values()
    elif not isinstance(days, list):
        return 0
    return sum(1 for day in days if isinstance(day, dict) and day.get("completed"))


def is_calibration_complete(blob: Any) -> bool:
    return isinstance(blob, dict) and bool(blob.get("completedAt"))


# =============================================================================
# Resolver
# =============================================================================


class ConflictResolver:
    """
    Decides which copy of a domain blob survives a pull.

    Args:
        registry: Supplies each domain's ConflictRule variant
        critical_fields: Profile fields whose loss is never accepted
    """

    def __init__(
        self,
        registry: DomainRegistry = REGISTRY,
        critical_fields: Iterable[str] = (),
    ):
        self.registry = registry
        self.critical_fields = tuple(critical_fields)

    def resolve(
        self,
        domain: Domain | str,
        local_blob: Any,
        remote_blob: Any,
        local_updated_at: datetime | None = None,
    ) -> Resolution:
        """
        Run the ladder for one domain.

        `local_updated_at` is the store's implicit write time, used when
        the local blob carries no timestamp field of its own.
        """
        spec = self.registry.get(domain)

        local_empty = is_empty_blob(local_blob)
        remote_empty = is_empty_blob(remote_blob)

        if remote_empty and not local_empty:
            return Resolution(True, "remote-empty")
        if local_empty:
            return Resolution(False, "local-empty")

        if spec.rule is ConflictRule.CALIBRATION:
            resolution = self._check_calibration(local_blob, remote_blob)
            if resolution is not None:
                return resolution

        if spec.rule is ConflictRule.PROFILE:
            resolution = self._check_profile(local_blob, remote_blob)
            if resolution is not None:
                return resolution

        return self._check_timestamps(local_blob, remote_blob, local_updated_at)

    def _check_calibration(self, local_blob: Any, remote_blob: Any) -> Resolution | None:
        local_days = count_completed_days(local_blob)
        remote_days = count_completed_days(remote_blob)
        if local_days > remote_days:
            logger.debug(
                f"Local calibration has {local_days} completed days, remote has {remote_days}"
            )
            return Resolution(True, "calibration-more-days")
        if is_calibration_complete(local_blob) and not is_calibration_complete(remote_blob):
            return Resolution(True, "calibration-complete")
        return None

    def _check_profile(self, local_blob: Any, remote_blob: Any) -> Resolution | None:
        if not isinstance(local_blob, dict):
            return None
        remote = remote_blob if isinstance(remote_blob, dict) else {}
        for field in self.critical_fields:
            if not _is_empty_value(local_blob.get(field)) and _is_empty_value(remote.get(field)):
                logger.debug(f"Local profile has critical field {field}, remote does not")
                return Resolution(True, "profile-critical-field")
        return None

    def _check_timestamps(
        self,
        local_blob: Any,
        remote_blob: Any,
        local_updated_at: datetime | None,
    ) -> Resolution:
        local_ts = extract_timestamp(local_blob) or local_updated_at
        remote_ts = extract_timestamp(remote_blob)

        if local_ts is None and remote_ts is None:
            return Resolution(True, "default-local")
        if remote_ts is None:
            return Resolution(True, "local-only-timestamp")

        if local_ts is not None and local_ts >= remote_ts:
            return Resolution(True, "local-newer")

        local_fields = count_meaningful_fields(local_blob)
        remote_fields = count_meaningful_fields(remote_blob)
        if local_fields > remote_fields:
            return Resolution(True, "local-more-complete")
        return Resolution(False, "remote-newer")
