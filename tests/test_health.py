"""
Health check: verify the package and its public surface import cleanly.
"""


def test_import_advisor_sync():
    """Test that advisor_sync package can be imported."""
    import advisor_sync
    assert advisor_sync.__version__ == "1.0.0"


def test_import_settings():
    from advisor_sync.config import SyncSettings

    settings = SyncSettings(_env_file=None)
    assert settings.backup_retention_days == 14
    assert settings.debounce_seconds == 1.0
    assert settings.prune_caps["activities"] == 50
    assert not settings.has_supabase


def test_settings_from_env(monkeypatch):
    from advisor_sync.config import SyncSettings

    monkeypatch.setenv("BACKUP_RETENTION_DAYS", "7")
    monkeypatch.setenv("PROFILE_CRITICAL_FIELDS", '["age"]')
    settings = SyncSettings(_env_file=None)

    assert settings.backup_retention_days == 7
    assert settings.profile_critical_fields == ["age"]


def test_import_engine_surface():
    from advisor_sync.sync import ConflictResolver, Debouncer, SyncEngine
    from advisor_sync.backup import BackupManager, BackupScheduler
    from advisor_sync.runtime import SyncRuntime

    assert SyncEngine is not None
    assert SyncRuntime is not None


def test_error_classification():
    import asyncio

    import httpx

    from advisor_sync.errors import ErrorKind, QuotaExceededError, RemoteError, classify_error

    assert classify_error(httpx.ConnectError("refused")) is ErrorKind.REMOTE_UNREACHABLE
    assert classify_error(httpx.ConnectError("refused"), online=False) is ErrorKind.NETWORK_UNAVAILABLE
    assert classify_error(asyncio.TimeoutError()) is ErrorKind.REMOTE_UNREACHABLE
    assert classify_error(RemoteError("Failed to fetch")) is ErrorKind.REMOTE_UNREACHABLE
    assert classify_error(RemoteError("violates policy", code="42501")) is ErrorKind.REMOTE_WRITE_REJECTED
    assert classify_error(QuotaExceededError("full")) is ErrorKind.QUOTA_EXCEEDED
    assert classify_error(ValueError("odd")) is ErrorKind.UNKNOWN
