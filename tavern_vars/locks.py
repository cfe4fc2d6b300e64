"""Per-resource serialisation of async operations.

Every mutation of a scope that is followed by a save runs through
LockManager.acquire(scope.key, operation). Acquisitions on the same key are
chained FIFO: each caller registers its own completion future as the key's
tail before waiting for the previous tail, so exactly one operation per key
is in flight and queued operations start in submission order. Different keys
never wait on each other.

There is no timeout and no cancellation primitive. A cancelled waiter still
holds its place in the chain until its predecessor finishes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LockManager:
    """Keyed FIFO mutual exclusion for coroutines on one event loop."""

    def __init__(self) -> None:
        self._tails: dict[str, asyncio.Future[None]] = {}

    async def acquire(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run operation() once every earlier acquisition of key has finished.

        The operation's result is returned and its exception propagates to
        this caller only; a failing predecessor does not affect later callers.
        """
        loop = asyncio.get_running_loop()
        previous = self._tails.get(key)
        done: asyncio.Future[None] = loop.create_future()
        self._tails[key] = done

        try:
            if previous is not None:
                logger.debug("lock %s: waiting for predecessor", key)
                await asyncio.shield(previous)
            return await operation()
        finally:
            if previous is not None and not previous.done():
                # Cancelled while queued: release only after the predecessor
                previous.add_done_callback(lambda _: self._release(key, done))
            else:
                self._release(key, done)

    def _release(self, key: str, done: asyncio.Future[None]) -> None:
        if not done.done():
            done.set_result(None)
        if self._tails.get(key) is done:
            del self._tails[key]

    def is_locked(self, key: str) -> bool:
        return key in self._tails

    def lock_count(self) -> int:
        return len(self._tails)

    def clear(self) -> None:
        """Forget all tails. Operations already running are not affected."""
        self._tails.clear()
