"""
Tests for SyncRuntime: host lifecycle wiring across tabs.
"""

import asyncio

import pytest

from advisor_sync.config import SyncSettings
from advisor_sync.models import SyncStatus
from advisor_sync.registry import Domain
from advisor_sync.runtime import SyncRuntime


USER_ID = "user-1"


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio needed)."""
    return asyncio.run(coro)


@pytest.fixture
def settings():
    return SyncSettings(_env_file=None, debounce_seconds=10, backup_interval_minutes=60)


@pytest.fixture
def make_runtime(backend, hub, remote, backup_store, auth, settings):
    """Tabs: runtimes sharing one device backend and broadcast hub."""

    def _make(on_remote_change=None) -> SyncRuntime:
        return SyncRuntime.create(
            backend,
            remote,
            backup_store,
            auth,
            settings=settings,
            hub=hub,
            on_remote_change=on_remote_change,
        )

    return _make


def test_start_pulls_and_stop_shuts_down(make_runtime, remote):
    runtime = make_runtime()
    remote.rows[USER_ID] = {"id": USER_ID, "notes_data": ["remote"]}

    async def scenario():
        result = await runtime.start()
        assert runtime.scheduler.running
        await runtime.stop()
        return result

    result = _run(scenario())

    assert result.loaded == ["notes"]
    assert runtime.engine.status is SyncStatus.READY
    assert not runtime.scheduler.running


def test_sibling_write_triggers_host_reload(make_runtime):
    reloaded = []
    tab_a = make_runtime()
    tab_b = make_runtime(on_remote_change=reloaded.append)

    async def scenario():
        await tab_a.start()
        await tab_b.start()
        tab_a.local.set(Domain.PROFILE, {"name": "Sam"})
        await tab_a.stop()
        await tab_b.stop()

    _run(scenario())

    assert reloaded == ["profile"]


def test_sibling_load_is_not_refetched(make_runtime, remote):
    tab_a = make_runtime()
    tab_b = make_runtime()
    remote.rows[USER_ID] = {"id": USER_ID, "chats_data": [{"id": "c1"}]}

    async def scenario():
        await tab_a.start()
        fetches = len(remote.fetch_calls)
        # Sibling sees the data locally without another remote read
        value = tab_b.local.get(Domain.CHATS)
        await tab_a.stop()
        await tab_b.stop()
        return fetches, value

    fetches, value = _run(scenario())

    assert fetches == 1
    assert value == [{"id": "c1"}]


def test_visibility_hidden_flushes_and_backs_up(make_runtime, remote, backup_store):
    runtime = make_runtime()
    runtime.local.set(Domain.NOTES, ["a"])

    async def scenario():
        runtime.engine.schedule_debounced(Domain.NOTES)
        flushed = runtime.on_visibility_hidden()
        await runtime.dispatcher.drain()
        return flushed

    flushed = _run(scenario())

    assert flushed == ["notes"]
    assert remote.updated_fields() == ["notes_data"]
    assert len(backup_store.upserts) == 1


def test_page_hide(make_runtime, backup_store):
    runtime = make_runtime()
    runtime.local.set(Domain.NOTES, ["a"])

    async def scenario():
        runtime.on_page_hide()
        await runtime.dispatcher.drain()

    _run(scenario())
    assert len(backup_store.upserts) == 1


def test_stop_flushes_pending_pushes(make_runtime, remote):
    runtime = make_runtime()
    runtime.local.set(Domain.CHATS, [{"id": "c1"}])

    async def scenario():
        runtime.engine.schedule_debounced(Domain.CHATS)
        await runtime.stop()

    _run(scenario())
    assert remote.updated_fields() == ["chats_data"]


def test_reconnect_replays_deferred_and_backs_up(make_runtime, remote, backup_store):
    runtime = make_runtime()
    runtime.local.set(Domain.NOTES, ["a"])

    async def scenario():
        runtime.scheduler.start()
        runtime.set_online(False)
        result = await runtime.engine.push(Domain.NOTES)
        assert result.deferred
        runtime.set_online(True)
        await runtime.dispatcher.drain()
        await runtime.stop()

    _run(scenario())

    assert remote.updated_fields() == ["notes_data"]
    assert len(backup_store.upserts) == 1


def test_sign_out(make_runtime, auth):
    runtime = make_runtime()

    async def scenario():
        await runtime.start()
        auth.sign_out()
        runtime.handle_auth_change(None)
        await runtime.stop()

    _run(scenario())
    assert runtime.engine.status is SyncStatus.IDLE


class TestFromSettings:

    @pytest.fixture(autouse=True)
    def fake_client(self, monkeypatch):
        from unittest.mock import MagicMock

        client = MagicMock()
        client.auth.get_session.return_value = MagicMock(user=MagicMock(id="session-user"))
        monkeypatch.setattr("advisor_sync.db.client.get_client", lambda: client)
        return client

    def test_explicit_user_is_fixed(self, backend):
        runtime = SyncRuntime.from_settings(SyncSettings(_env_file=None), backend=backend, user_id="user-7")
        assert runtime.engine.auth.current_user_id() == "user-7"

    def test_session_user_without_explicit_user(self, backend):
        runtime = SyncRuntime.from_settings(SyncSettings(_env_file=None), backend=backend)
        assert runtime.engine.auth.current_user_id() == "session-user"

    def test_backup_timeout_from_settings(self, backend):
        settings = SyncSettings(_env_file=None, remote_timeout_seconds=12)
        runtime = SyncRuntime.from_settings(settings, backend=backend, user_id="user-7")
        assert runtime.backups.timeout == 12
        assert runtime.engine.timeout == 12
