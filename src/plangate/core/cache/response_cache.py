from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from plangate.core.providers.base import ProviderResponse


@dataclass(frozen=True, slots=True)
class CacheEntry:
    fingerprint: str
    response: ProviderResponse
    inserted_at: float
    expires_at: float


@dataclass(slots=True)
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    def as_dict(self, size: int) -> dict:
        lookups = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "size": size,
            "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
        }


class ResponseCache:
    """Bounded TTL cache of successful provider responses, LRU on overflow.

    Only ``ProviderResponse`` values are stored. When ``enabled`` is False
    every lookup misses and every store is dropped.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 300.0,
        max_entries: int = 500,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.enabled = enabled
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._stats = CacheStats()
        self._lock = threading.Lock()

    def get(self, fingerprint: str) -> ProviderResponse | None:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                self._stats.misses += 1
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[fingerprint]
                self._stats.expirations += 1
                self._stats.misses += 1
                return None
            self._entries.move_to_end(fingerprint)
            self._stats.hits += 1
            return entry.response

    def put(self, fingerprint: str, response: ProviderResponse) -> None:
        if not self.enabled:
            return
        if not isinstance(response, ProviderResponse):
            raise TypeError("only ProviderResponse values can be cached")
        with self._lock:
            now = self._clock()
            self._entries[fingerprint] = CacheEntry(
                fingerprint=fingerprint,
                response=response,
                inserted_at=now,
                expires_at=now + self.ttl_seconds,
            )
            self._entries.move_to_end(fingerprint)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self._stats.evictions += 1

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict:
        with self._lock:
            return {"enabled": self.enabled, **self._stats.as_dict(len(self._entries))}
