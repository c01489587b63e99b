"""
Host-reported connectivity.

The host feeds online/offline transitions in (a browser's navigator
state, a network monitor); components subscribe to react to them.
"""

import logging
from typing import Callable

logger = logging.getLogger(__name__)

ConnectivityCallback = Callable[[bool], None]


class Connectivity:
    """Online flag with transition callbacks."""

    def __init__(self, online: bool = True):
        self._online = online
        self._callbacks: list[ConnectivityCallback] = []

    @property
    def online(self) -> bool:
        return self._online

    @property
    def offline(self) -> bool:
        return not self._online

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Back online" if online else "Went offline")
        for callback in list(self._callbacks):
            try:
                callback(online)
            except Exception as e:
                logger.error(f"Connectivity callback failed: {e}")

    def subscribe(self, callback: ConnectivityCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe
