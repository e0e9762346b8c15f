"""Single-writer serialization of collection mutations.

Every engine operation reads the whole collection, may suspend on remote or
cache I/O, and writes the whole collection back. Running two of them
interleaved loses one side's changes, so operations on the same cache key
take turns. ``asyncio.Lock`` wakes waiters in arrival order, which makes
this a FIFO queue per key.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class KeyedWriteSerializer:
    """Per-key FIFO mutual exclusion.

    Share one instance between engines that persist to the same cache key.
    Not re-entrant: code already holding a key must not ask for it again.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiting: dict[str, int] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._lock_for(key)
        self._waiting[key] = self._waiting.get(key, 0) + 1
        try:
            if lock.locked():
                logger.debug("Waiting for writer slot on %r (%d queued)", key, self._waiting[key])
            await lock.acquire()
        finally:
            self._waiting[key] -= 1
        try:
            yield
        finally:
            lock.release()

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def queued(self, key: str) -> int:
        """Number of callers currently waiting for *key*."""
        return self._waiting.get(key, 0)
