"""
Tests for cross-tab notification.

Tabs are LocalStores sharing one backend. A write in one tab must reach
every sibling and never echo back to the writer.
"""

from advisor_sync.models import StorageUpdateMessage
from advisor_sync.registry import Domain
from advisor_sync.storage import BroadcastChannel, ChannelHub, LocalStore, TabBroadcaster


class TestBroadcastChannel:

    def test_message_reaches_peers_not_sender(self, hub):
        a = hub.open("sync")
        b = hub.open("sync")
        other = hub.open("elsewhere")
        received = {"a": [], "b": [], "other": []}
        a.on_message = received["a"].append
        b.on_message = received["b"].append
        other.on_message = received["other"].append

        a.post_message({"type": "storage-update", "domain": "notes"})

        assert received == {"a": [], "b": [{"type": "storage-update", "domain": "notes"}], "other": []}

    def test_closed_channel_receives_nothing(self, hub):
        a = hub.open("sync")
        b = hub.open("sync")
        received = []
        b.on_message = received.append
        b.close()

        a.post_message({"type": "storage-update", "domain": "notes"})
        assert received == []

    def test_hubs_are_isolated(self):
        a = BroadcastChannel("sync", ChannelHub())
        b = BroadcastChannel("sync", ChannelHub())
        received = []
        b.on_message = received.append

        a.post_message({"type": "storage-update", "domain": "notes"})
        assert received == []


class TestTabBroadcasterChannel:

    def test_write_notifies_sibling_tab(self, make_tab):
        tab_a = make_tab()
        tab_b = make_tab()
        seen_a, seen_b = [], []
        tab_a.broadcaster.subscribe(seen_a.append)
        tab_b.broadcaster.subscribe(seen_b.append)

        tab_a.set(Domain.PROFILE, {"name": "Sam"})

        assert seen_b == ["profile"]
        assert seen_a == []
        # Sibling re-reads locally
        assert tab_b.get(Domain.PROFILE)["name"] == "Sam"

    def test_remove_notifies_sibling_tab(self, make_tab):
        tab_a = make_tab()
        tab_b = make_tab()
        seen = []
        tab_b.broadcaster.subscribe(seen.append)

        tab_a.remove(Domain.NOTES)
        assert seen == ["notes"]

    def test_unsubscribe(self, make_tab):
        tab_a = make_tab()
        tab_b = make_tab()
        seen = []
        unsubscribe = tab_b.broadcaster.subscribe(seen.append)
        unsubscribe()

        tab_a.set(Domain.NOTES, ["x"])
        assert seen == []

    def test_malformed_messages_are_ignored(self, hub):
        broadcaster = TabBroadcaster(channel=hub.open("sync"))
        sender = hub.open("sync")
        seen = []
        broadcaster.subscribe(seen.append)

        sender.post_message({"type": "something-else", "domain": "notes"})
        sender.post_message({"type": "storage-update"})
        sender.post_message(StorageUpdateMessage(domain="chats").model_dump())

        assert seen == ["chats"]

    def test_callback_errors_do_not_stop_delivery(self, make_tab):
        tab_a = make_tab()
        tab_b = make_tab()
        seen = []

        def broken(domain):
            raise RuntimeError("boom")

        tab_b.broadcaster.subscribe(broken)
        tab_b.broadcaster.subscribe(seen.append)

        tab_a.set(Domain.NOTES, ["x"])
        assert seen == ["notes"]

    def test_transport(self, hub, backend):
        assert TabBroadcaster(channel=hub.open("sync")).transport == "channel"
        assert TabBroadcaster(backend=backend).transport == "storage-event"
        assert TabBroadcaster().transport == "none"


class TestTabBroadcasterStorageEvents:
    """Fallback transport when no channel is available."""

    def _tab(self, backend, clock) -> LocalStore:
        return LocalStore(backend, broadcaster=TabBroadcaster(backend=backend), clock=clock)

    def test_write_notifies_sibling_tab(self, backend, clock):
        tab_a = self._tab(backend, clock)
        tab_b = self._tab(backend, clock)
        seen_a, seen_b = [], []
        tab_a.broadcaster.subscribe(seen_a.append)
        tab_b.broadcaster.subscribe(seen_b.append)

        tab_a.set(Domain.FOCUS_GOALS, {"goals": ["protein"]})

        assert seen_b == ["focus_goals"]
        assert seen_a == []

    def test_non_domain_keys_are_ignored(self, backend, clock):
        tab = self._tab(backend, clock)
        seen = []
        tab.broadcaster.subscribe(seen.append)

        backend.set_item("profile_main:health-advisor-draft", "{}", source="another-tab")
        assert seen == []

    def test_close_stops_listening(self, backend, clock):
        tab_a = self._tab(backend, clock)
        tab_b = self._tab(backend, clock)
        seen = []
        tab_b.broadcaster.subscribe(seen.append)
        tab_b.broadcaster.close()

        tab_a.set(Domain.NOTES, ["x"])
        assert seen == []
