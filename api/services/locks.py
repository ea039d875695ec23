"""Keyed asyncio locks — serialise work per route without a global lock."""

import asyncio
from contextlib import asynccontextmanager
from typing import Hashable


class KeyedLock:
    """
    One ``asyncio.Lock`` per key, created on first use and dropped once
    no coroutine holds or waits on it.
    """

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._locks.pop(key, None)

    def users(self, key: Hashable) -> int:
        """Holders plus waiters for ``key``."""
        return self._users.get(key, 0)

    def __len__(self) -> int:
        return len(self._locks)
