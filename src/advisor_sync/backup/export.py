"""
Manual backup files.

An export is a JSON document holding every domain of the active profile:

    {
        "version": "1.0",
        "createdAt": "<iso>",
        "profileId": "profile_main",
        "data": {"health-advisor-profile": {...}, ...},
        "summary": {"profileName": ..., "chatCount": ..., ...}
    }

Files written by older clients store each value as a JSON string; those
are decoded on import.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from advisor_sync.backup.manager import restore_blobs
from advisor_sync.models import RestoreResult
from advisor_sync.registry import REGISTRY, Domain, DomainRegistry
from advisor_sync.storage.local_store import LocalStore
from advisor_sync.utils import to_iso, today_iso, utc_now

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"

# Summary counter -> domain whose list length it reports
_COUNTED = {
    "chatCount": Domain.CHATS,
    "activityCount": Domain.ACTIVITIES,
    "insightCount": Domain.INSIGHTS,
}


def _decode(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


def summarize(data: dict[str, Any], registry: DomainRegistry = REGISTRY) -> dict[str, Any]:
    """Profile name and collection counts for a restore confirmation prompt."""
    summary: dict[str, Any] = {"profileName": None}

    profile = _decode(data.get(registry.get(Domain.PROFILE).local_key))
    if isinstance(profile, dict):
        summary["profileName"] = profile.get("name")

    for counter, domain in _COUNTED.items():
        blob = _decode(data.get(registry.get(domain).local_key))
        summary[counter] = len(blob) if isinstance(blob, list) else 0

    return summary


def build_export(
    local: LocalStore,
    clock: Callable[[], datetime] = utc_now,
) -> dict[str, Any]:
    data = local.snapshot()
    return {
        "version": EXPORT_VERSION,
        "createdAt": to_iso(clock()),
        "profileId": local.active_profile_id,
        "data": data,
        "summary": summarize(data, local.registry),
    }


def default_filename(now: datetime | None = None) -> str:
    return f"health-advisor-backup-{today_iso(now)}.json"


def write_export(local: LocalStore, path: str | Path) -> dict[str, Any]:
    """Write an export file. Returns the document's summary."""
    document = build_export(local)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document, indent=2), encoding="utf-8")
    logger.info(f"Exported {len(document['data'])} domains to {path}")
    return document["summary"]


def read_export(path: str | Path) -> dict[str, Any]:
    """
    Parse and validate an export file.

    Raises:
        ValueError: not JSON, or missing `version`/`data`
    """
    try:
        document = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse backup file: {e}") from e

    if not isinstance(document, dict) or not document.get("version") or not isinstance(document.get("data"), dict):
        raise ValueError("Invalid backup file format")

    document["data"] = {key: _decode(value) for key, value in document["data"].items()}
    if not document.get("summary"):
        document["summary"] = summarize(document["data"])
    return document


def import_export(local: LocalStore, document: dict[str, Any]) -> RestoreResult:
    """Restore an export into the active profile."""
    result = restore_blobs(local, document.get("data") or {}, local.registry)
    logger.info(f"Imported {len(result.restored)} domains")
    return result
