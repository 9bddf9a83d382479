"""Time-expiring cache for ranked result sets."""

from __future__ import annotations

import asyncio
import copy
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .models import ScoredResult, normalize_query

CacheKey = Tuple[str, int]


@dataclass
class CacheEntry:
    created_at: float
    results: List[ScoredResult]
    total_considered: int


class ResultCache:
    """A lock-protected TTL cache keyed by (normalized query, limit).

    Expired entries are swept on every read. The size bound evicts the least
    recently used entry. Entries are deep-copied on the way in and out so
    callers cannot mutate what other callers will be served.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: "OrderedDict[CacheKey, CacheEntry]" = OrderedDict()
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._lock = asyncio.Lock()

    @staticmethod
    def make_key(query: str, limit: int) -> CacheKey:
        return (normalize_query(query), int(limit))

    def __len__(self) -> int:
        return len(self._entries)

    def _sweep(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if now - entry.created_at >= self._ttl]
        for key in expired:
            del self._entries[key]

    async def get_entry(self, query: str, limit: int) -> Optional[CacheEntry]:
        key = self.make_key(query, limit)
        async with self._lock:
            self._sweep(self._clock())
            entry = self._entries.get(key)
            if entry is None:
                return None
            self._entries.move_to_end(key)
            return copy.deepcopy(entry)

    async def get(self, query: str, limit: int) -> Optional[List[ScoredResult]]:
        entry = await self.get_entry(query, limit)
        return entry.results if entry is not None else None

    async def put(
        self,
        query: str,
        limit: int,
        results: List[ScoredResult],
        total_considered: Optional[int] = None,
    ) -> None:
        key = self.make_key(query, limit)
        entry = CacheEntry(
            created_at=self._clock(),
            results=copy.deepcopy(list(results)),
            total_considered=len(results) if total_considered is None else total_considered,
        )
        async with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            elif len(self._entries) >= self._max_size:
                self._entries.popitem(last=False)
            self._entries[key] = entry

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
