"""
Cross-tab notification of local writes.

When one tab writes a domain to LocalStore, sibling tabs are told to
re-read it from LocalStore rather than fetch it from the remote store.
This is the only mechanism that keeps several tabs from independently
re-fetching the same remote data after one of them completes a pull.

Two transports:
- BroadcastChannel: named in-process channels scoped to a ChannelHub
  (the page origin). Preferred.
- Storage events: the backend's own change notifications, used when
  no channel is available.

Delivery is best-effort and unordered; a tab never receives its own
publications.
"""

import logging
import uuid
from typing import Any, Callable

from pydantic import ValidationError

from advisor_sync.models import STORAGE_UPDATE, StorageUpdateMessage
from advisor_sync.registry import REGISTRY, DomainRegistry
from advisor_sync.errors import UnknownDomainError
from advisor_sync.storage.backends import StorageBackend

logger = logging.getLogger(__name__)

StorageChangeCallback = Callable[[str], None]


# =============================================================================
# Channel transport
# =============================================================================


class ChannelHub:
    """Registry of open channels, keyed by name. One hub per origin."""

    def __init__(self):
        self._channels: dict[str, list["BroadcastChannel"]] = {}

    def open(self, name: str) -> "BroadcastChannel":
        return BroadcastChannel(name, self)

    def _attach(self, channel: "BroadcastChannel") -> None:
        self._channels.setdefault(channel.name, []).append(channel)

    def _detach(self, channel: "BroadcastChannel") -> None:
        peers = self._channels.get(channel.name, [])
        if channel in peers:
            peers.remove(channel)

    def _deliver(self, sender: "BroadcastChannel", data: dict[str, Any]) -> None:
        for peer in list(self._channels.get(sender.name, [])):
            if peer is sender or peer.closed:
                continue
            peer._receive(dict(data))


# Default hub shared by every tab in this process
default_hub = ChannelHub()


class BroadcastChannel:
    """
    A named channel endpoint.

    Messages posted on one endpoint reach every other open endpoint with
    the same name on the same hub, never the sender itself.
    """

    def __init__(self, name: str, hub: ChannelHub | None = None):
        self.name = name
        self.hub = hub or default_hub
        self.closed = False
        self.on_message: Callable[[dict[str, Any]], None] | None = None
        self.hub._attach(self)

    def post_message(self, data: dict[str, Any]) -> None:
        if self.closed:
            raise RuntimeError(f"Channel {self.name} is closed")
        self.hub._deliver(self, data)

    def close(self) -> None:
        self.closed = True
        self.hub._detach(self)

    def _receive(self, data: dict[str, Any]) -> None:
        if self.on_message is not None:
            self.on_message(data)


# =============================================================================
# TabBroadcaster
# =============================================================================


class TabBroadcaster:
    """
    Publish/subscribe for "storage-update" notifications.

    Args:
        channel: Preferred transport. None to use storage events.
        backend: Storage backend whose events are the fallback transport.
        tab_id: Identity of this tab; writes tagged with it are ignored.
        registry: Maps storage keys back to domain names (fallback only).
    """

    def __init__(
        self,
        channel: BroadcastChannel | None = None,
        backend: StorageBackend | None = None,
        tab_id: str | None = None,
        registry: DomainRegistry = REGISTRY,
    ):
        self.tab_id = tab_id or uuid.uuid4().hex
        self.registry = registry
        self._callbacks: list[StorageChangeCallback] = []
        self._channel = channel
        self._unlisten: Callable[[], None] | None = None

        if channel is not None:
            channel.on_message = self._on_message
        elif backend is not None:
            self._unlisten = backend.add_listener(self._on_storage_event)
        else:
            logger.warning("No broadcast transport available; cross-tab sync disabled")

    @property
    def transport(self) -> str:
        if self._channel is not None:
            return "channel"
        if self._unlisten is not None:
            return "storage-event"
        return "none"

    def publish(self, domain: str) -> None:
        """Tell sibling tabs that a domain changed."""
        if self._channel is None:
            # Storage events fire on their own for the fallback transport
            return
        message = StorageUpdateMessage(domain=domain)
        try:
            self._channel.post_message(message.model_dump())
        except Exception as e:
            logger.warning(f"Failed to broadcast update for {domain}: {e}")

    def subscribe(self, callback: StorageChangeCallback) -> Callable[[], None]:
        """Register a callback(domain). Returns an unsubscribe function."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def close(self) -> None:
        self._callbacks.clear()
        if self._channel is not None:
            self._channel.close()
            self._channel = None
        if self._unlisten is not None:
            self._unlisten()
            self._unlisten = None

    def _on_message(self, data: dict[str, Any]) -> None:
        if not isinstance(data, dict) or data.get("type") != STORAGE_UPDATE:
            return
        try:
            message = StorageUpdateMessage.model_validate(data)
        except ValidationError:
            logger.debug(f"Ignoring malformed broadcast: {data!r}")
            return
        logger.debug(f"Received cross-tab update for: {message.domain}")
        self._notify(message.domain)

    def _on_storage_event(self, key: str, source: str | None) -> None:
        if source == self.tab_id:
            return
        base_key = key.split(":", 1)[1] if ":" in key else key
        try:
            domain = self.registry.by_local_key(base_key).domain.value
        except UnknownDomainError:
            return
        logger.debug(f"Storage event for: {key}")
        self._notify(domain)

    def _notify(self, domain: str) -> None:
        for callback in list(self._callbacks):
            try:
                callback(domain)
            except Exception as e:
                logger.error(f"Storage change callback failed for {domain}: {e}")
