"""
Project Name: Radioflasher
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Catalog Query Cache
"""

import time
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Hashable

from radioflasher.constants import DEFAULT_CACHE_TTL

logger = logging.getLogger("Catalog")


@dataclass
class CacheEntry:
    key: Hashable
    value: Any
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


class TTLCache:
    """
    Key/value cache where every entry expires `ttl` seconds after it was
    stored. An expired entry is treated as a miss and removed on read.

    `get_or_load` holds a per key asyncio lock across the lookup and the load
    so two concurrent queries for the same key never populate it twice. The
    lock is dropped once nobody waits on it.
    """

    def __init__(self, ttl: float = DEFAULT_CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry] = {}
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}
        self._generation = 0

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key):
        return self._lookup(key) is not None

    def _lookup(self, key) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            logger.debug(f"Cache entry expired: {key}")
            del self._entries[key]
            return None
        return entry

    def get(self, key, default=None):
        entry = self._lookup(key)
        return entry.value if entry else default

    def set(self, key, value, ttl: float | None = None):
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            created_at=self._clock(),
            ttl=self.ttl if ttl is None else ttl,
        )

    async def get_or_load(self, key, loader: Callable[[], Awaitable[Any]]):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                entry = self._lookup(key)
                if entry is not None:
                    return entry.value
                generation = self._generation
                value = await loader()
                # A clear() during the load makes the value stale
                if generation == self._generation:
                    self.set(key, value)
                return value
        finally:
            self._waiters[key] -= 1
            if not self._waiters[key]:
                del self._waiters[key]
                del self._locks[key]

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self):
        """Drops every entry. Locks stay with their waiters so loads in flight keep serializing."""
        self._entries.clear()
        self._generation += 1
