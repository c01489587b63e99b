"""
Tests for manual export/import files.
"""

import json

import pytest

from advisor_sync.backup import build_export, import_export, read_export, write_export
from advisor_sync.registry import Domain
from advisor_sync.storage import LocalStore, MemoryBackend


@pytest.fixture
def populated(local, sample_profile):
    local.set(Domain.PROFILE, sample_profile)
    local.set(Domain.CHATS, [{"id": "c1"}, {"id": "c2"}])
    local.set(Domain.ACTIVITIES, [{"id": 1}])
    return local


def test_build_export(populated, clock):
    document = build_export(populated, clock=clock)

    assert document["version"] == "1.0"
    assert document["createdAt"] == "2026-03-20T12:00:00+00:00"
    assert document["profileId"] == "profile_main"
    assert set(document["data"]) == {
        "health-advisor-profile",
        "health-advisor-chats",
        "health-advisor-activities",
    }
    assert document["summary"] == {
        "profileName": "Sam",
        "chatCount": 2,
        "activityCount": 1,
        "insightCount": 0,
    }


def test_export_import_round_trip(populated, tmp_path, clock):
    path = tmp_path / "backups" / "export.json"
    summary = write_export(populated, path)
    assert summary["chatCount"] == 2

    fresh = LocalStore(MemoryBackend(), clock=clock)
    result = import_export(fresh, read_export(path))

    assert result.success
    assert len(result.restored) == 3
    assert fresh.get(Domain.PROFILE)["name"] == "Sam"
    assert fresh.get(Domain.CHATS) == [{"id": "c1"}, {"id": "c2"}]


def test_legacy_string_values_are_decoded(tmp_path):
    path = tmp_path / "legacy.json"
    path.write_text(json.dumps({
        "version": "1.0",
        "data": {
            "health-advisor-profile": json.dumps({"name": "Sam"}),
            "health-advisor-learned-insights": json.dumps([{"text": "a"}, {"text": "b"}]),
        },
    }))

    document = read_export(path)

    assert document["data"]["health-advisor-profile"] == {"name": "Sam"}
    assert document["summary"]["profileName"] == "Sam"
    assert document["summary"]["insightCount"] == 2


@pytest.mark.parametrize("content", [
    "not json",
    json.dumps({"data": {}}),
    json.dumps({"version": "1.0"}),
    json.dumps([1, 2]),
])
def test_invalid_files_rejected(tmp_path, content):
    path = tmp_path / "bad.json"
    path.write_text(content)

    with pytest.raises(ValueError):
        read_export(path)
