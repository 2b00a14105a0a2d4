"""Per-key debounce used to coalesce inline-query keystrokes."""

from __future__ import annotations

import asyncio
import threading
from typing import Awaitable, Callable, Hashable

from .logging_setup import log

DeferredAction = Callable[[], Awaitable[None]]


class DebounceResolver:
    """Run only the last action scheduled for a key once the key goes quiet.

    touch() cancels whatever is pending for the key and schedules the new
    action after quiet_period seconds. When the timer expires the action is
    checked against the latest input recorded for the key; a stale action
    returns without running. The action itself runs outside the lock.
    """

    def __init__(self, quiet_period: float = 1.5):
        self.quiet_period = quiet_period
        self._pending: dict[Hashable, asyncio.Task] = {}
        self._latest: dict[Hashable, str] = {}
        self._lock = threading.Lock()

    def touch(self, key: Hashable, current_input: str, action: DeferredAction) -> asyncio.Task:
        loop = asyncio.get_running_loop()
        with self._lock:
            self._latest[key] = current_input
            previous = self._pending.pop(key, None)
            if previous is not None and not previous.done():
                previous.cancel()
            task = loop.create_task(self._fire(key, current_input, action))
            self._pending[key] = task
        return task

    async def _fire(self, key: Hashable, captured_input: str, action: DeferredAction):
        try:
            await asyncio.sleep(self.quiet_period)
        except asyncio.CancelledError:
            log.debug(f"Debounce for {key!r} superseded")
            raise

        me = asyncio.current_task()
        with self._lock:
            if self._latest.get(key) != captured_input or self._pending.get(key) is not me:
                log.debug(f"Debounce for {key!r} is stale, skipping")
                return
            del self._pending[key]
            del self._latest[key]

        try:
            await action()
        except Exception:
            log.exception(f"Debounced action for {key!r} failed")

    def cancel(self, key: Hashable) -> bool:
        with self._lock:
            self._latest.pop(key, None)
            task = self._pending.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def pending_count(self) -> int:
        with self._lock:
            return sum(1 for task in self._pending.values() if not task.done())

    async def close(self):
        """Cancel every pending timer and wait for the cancellations to land."""
        with self._lock:
            tasks = list(self._pending.values())
            self._pending.clear()
            self._latest.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
