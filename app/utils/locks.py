from __future__ import annotations

"""
Per-key asyncio locks.

`KeyedLock` hands out one `asyncio.Lock` per key (owner id, content id) so
work on the same key is serialized while different keys run in parallel.
Entries are reference-counted and dropped once nobody holds or waits on them.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable, Tuple


class KeyedLock:
    def __init__(self) -> None:
        self._locks: Dict[Hashable, Tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock, refs = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, refs + 1)
        try:
            async with lock:
                yield
        finally:
            lock, refs = self._locks[key]
            if refs <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, refs - 1)

    def locked(self, key: Hashable) -> bool:
        entry = self._locks.get(key)
        return bool(entry and entry[0].locked())

    def __len__(self) -> int:
        return len(self._locks)


__all__ = ["KeyedLock"]
