"""
Write-amplification control for domain pushes.

Debouncer coalesces bursts of write-intents for a domain into a single
push after a quiet interval. BeaconDispatcher is the fire-and-forget
primitive used both when a timer fires and on page teardown, where the
caller cannot wait for the network.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

PushFn = Callable[[str], Awaitable[Any]]

DEFAULT_DEBOUNCE_SECONDS = 1.0


class BeaconDispatcher:
    """
    Best-effort, non-awaited dispatch of coroutines.

    Dispatched work runs as tasks on the current event loop. The dispatcher
    holds a reference until each task finishes and logs failures, but the
    caller never waits: if the process exits first, the work is lost.
    Use drain() at orderly shutdown.
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, fn: Callable[..., Awaitable[Any]], *args: Any, name: str | None = None) -> asyncio.Task | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop; dropped dispatch {name or fn!r}")
            return None

        task = loop.create_task(fn(*args), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Dispatched task {task.get_name()} failed: {exc}")

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight dispatches (orderly shutdown and tests)."""
        while self._tasks:
            done, _ = await asyncio.wait(set(self._tasks), timeout=timeout)
            if not done:
                break


class Debouncer:
    """
    Per-domain quiet-interval timers.

    Args:
        push_fn: Coroutine function pushing one domain
        delay: Quiet interval in seconds
        dispatcher: Fire-and-forget primitive for pushes
    """

    def __init__(
        self,
        push_fn: PushFn,
        delay: float = DEFAULT_DEBOUNCE_SECONDS,
        dispatcher: BeaconDispatcher | None = None,
    ):
        self.push_fn = push_fn
        self.delay = delay
        self.dispatcher = dispatcher or BeaconDispatcher()
        self._timers: dict[str, asyncio.TimerHandle] = {}

    @property
    def pending(self) -> frozenset[str]:
        return frozenset(self._timers)

    def schedule(self, domain: str) -> None:
        """Arm, or re-arm, the timer for a domain. Needs a running loop."""
        loop = asyncio.get_running_loop()
        existing = self._timers.pop(domain, None)
        if existing is not None:
            existing.cancel()
        self._timers[domain] = loop.call_later(self.delay, self._fire, domain)

    def schedule_immediate(self, domain: str) -> None:
        """Skip the quiet interval for critical changes."""
        existing = self._timers.pop(domain, None)
        if existing is not None:
            existing.cancel()
        self._dispatch(domain)

    def flush_all(self) -> list[str]:
        """
        Cancel every pending timer and dispatch its push now.

        The pushes are not awaited: this runs during teardown, where
        completion cannot be guaranteed. Domains with no pending timer
        are no-ops.
        """
        flushed = list(self._timers)
        for domain in flushed:
            self._timers.pop(domain).cancel()
            self._dispatch(domain)
        if flushed:
            logger.info(f"Flushed {len(flushed)} pending syncs: {', '.join(flushed)}")
        return flushed

    def cancel_all(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def _fire(self, domain: str) -> None:
        self._timers.pop(domain, None)
        self._dispatch(domain)

    def _dispatch(self, domain: str) -> None:
        self.dispatcher.dispatch(self.push_fn, domain, name=f"push:{domain}")
