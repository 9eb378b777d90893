"""
Debounced Scheduling

A trailing debounce on the asyncio event loop: every trigger cancels
the pending timer and starts a new one, so only the last trigger in a
quiet window fires.

Keys let one debouncer track independent resources (one timer per
month key) without a write for one key cancelling another.
"""

import asyncio
from typing import Awaitable, Callable, Hashable, Optional


AsyncAction = Callable[[], Awaitable[None]]


class KeyedDebouncer:
    """
    One trailing-debounce timer per key.

    Actions are coroutine factories, called only when the timer fires.
    """

    def __init__(self, delay: float, name: str = "debouncer"):
        self.delay = delay
        self.name = name
        self._timers: dict[Hashable, asyncio.TimerHandle] = {}
        self._actions: dict[Hashable, AsyncAction] = {}
        self._running: set[asyncio.Task] = set()

    def trigger(self, key: Hashable, action: AsyncAction) -> None:
        """(Re)start the timer for key. Must be called from inside the event loop."""
        loop = asyncio.get_running_loop()
        self.cancel(key)
        self._actions[key] = action
        self._timers[key] = loop.call_later(self.delay, self._fire, key)

    def is_pending(self, key: Optional[Hashable] = None) -> bool:
        """Is a timer waiting, for key or for any key?"""
        if key is None:
            return bool(self._timers)
        return key in self._timers

    @property
    def pending_keys(self) -> list:
        return list(self._timers)

    @property
    def in_flight(self) -> int:
        """Actions that fired and have not finished yet."""
        return len(self._running)

    def cancel(self, key: Hashable) -> bool:
        """Drop the pending timer for key. Returns whether one was pending."""
        timer = self._timers.pop(key, None)
        self._actions.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def cancel_all(self) -> None:
        for key in list(self._timers):
            self.cancel(key)

    async def flush(self) -> None:
        """Run every pending action now and wait for all running ones."""
        pending = [(key, self._actions[key]) for key in list(self._timers)]
        for key, _ in pending:
            self.cancel(key)
        for _, action in pending:
            self._start(action)
        await self.wait_idle()

    async def wait_idle(self) -> None:
        """Wait for actions that already fired."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    def _fire(self, key: Hashable) -> None:
        self._timers.pop(key, None)
        action = self._actions.pop(key, None)
        if action is None:
            return
        self._start(action)

    def _start(self, action: AsyncAction) -> None:
        task = asyncio.get_running_loop().create_task(action())
        self._running.add(task)
        task.add_done_callback(self._running.discard)
