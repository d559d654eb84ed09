'''
    Per-key asyncio locks.

    Mutations on one key (a user id, a conversation id) are serialized;
    different keys never wait on each other. Entries are dropped once no
    task holds or waits on them, so the map does not grow with every key
    ever seen.
'''

# ========== Imports ==========
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


# ========== Classes ==========
class KeyedLock:
    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]
