"""
Advisor Sync - Configuration and settings.

SyncSettings holds everything the engine needs: Supabase credentials,
sync timing, backup retention, local storage limits and the conflict
resolution knobs that are product decisions rather than correctness rules.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CRITICAL_FIELDS = [
    # Numeric targets
    "calorieTarget",
    "proteinTarget",
    "targetWeight",
    # Physical attributes
    "age",
    "height",
    "weight",
    "sex",
    # Computed recommendation
    "nutritionRecommendation",
]

DEFAULT_PRUNE_CAPS = {
    "activities": 50,
    "checkins": 30,
    "chats": 50,
}


class SyncSettings(BaseSettings):
    """
    Settings for the sync engine, backup service and CLI.

    Supabase fields are optional so the engine can run local-only;
    anything that talks to the remote store checks them on use.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Supabase
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    profile_table: str = "users_profile"
    backup_table: str = "user_backups"

    # Application
    sync_env: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Static user for CLI runs (no interactive sign-in)
    dev_user_id: str | None = None

    # Sync timing
    debounce_seconds: float = 1.0
    remote_timeout_seconds: float = 30.0

    # Backups
    backup_retention_days: int = 14
    backup_interval_minutes: int = 30

    # Local storage
    local_db_path: str = "~/.advisor_sync/local.db"
    local_quota_bytes: int = 5 * 1024 * 1024
    default_profile_id: str = "profile_main"
    broadcast_channel: str = "health-advisor-sync"

    # Conflict resolution / pruning knobs
    profile_critical_fields: list[str] = Field(default_factory=lambda: list(DEFAULT_CRITICAL_FIELDS))
    prune_caps: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_PRUNE_CAPS))

    @property
    def is_development(self) -> bool:
        return self.sync_env == "development"

    @property
    def is_production(self) -> bool:
        return self.sync_env == "production"

    @property
    def has_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)


@lru_cache
def get_settings() -> SyncSettings:
    """Get cached settings instance."""
    return SyncSettings()


class _SettingsProxy:
    """Lazy proxy for settings to avoid loading .env at import time."""

    _instance: SyncSettings | None = None

    def __getattr__(self, name: str):
        if self._instance is None:
            self._instance = get_settings()
        return getattr(self._instance, name)


settings = _SettingsProxy()
