# services/cache.py

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

HABITS_ENTITY = "habits"
ENTRIES_ENTITY = "entries"

def cache_key(entity: str, user_id: str) -> str:
    return f"{entity}-{user_id}"

@dataclass
class CacheStats:
    """Cache counters"""
    hits: int = 0
    misses: int = 0
    invalidations: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return (self.hits / total * 100) if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "invalidations": self.invalidations,
            "size": self.size,
            "hit_rate": round(self.hit_rate, 1)
        }

@dataclass
class CacheEntry:
    data: List[Any]
    timestamp: float

class SyncCache:
    """Per-collection read cache with a fixed time-to-live.

    There is no eviction beyond expiry: the key space is one entry per
    entity type for the signed-in user.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self.stats = CacheStats()

    def get(self, key: str) -> Optional[List[Any]]:
        """Cached data if still fresh, otherwise None"""
        entry = self._entries.get(key)
        if entry is not None and self._clock() - entry.timestamp < self.ttl_seconds:
            self.stats.hits += 1
            return list(entry.data)

        self.stats.misses += 1
        return None

    def set(self, key: str, data: List[Any]) -> None:
        self._entries[key] = CacheEntry(data=list(data), timestamp=self._clock())
        self.stats.size = len(self._entries)

    def invalidate(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            self.stats.invalidations += 1
            logger.debug(f"🗑️ Cache entry {key} invalidated")
        self.stats.size = len(self._entries)

    def clear(self) -> None:
        self.stats.invalidations += len(self._entries)
        self._entries.clear()
        self.stats.size = 0

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
