"""
Bounded in-process cache tier.

Insertion-ordered map with a hard entry ceiling. Crossing the ceiling evicts
the oldest 20% of entries in one batch instead of one entry per insert.
"""
import logging
import math
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

from .core import CacheEntry, CacheTier

logger = logging.getLogger("cache.local")

EVICTION_FRACTION = 0.2


class LocalCache(CacheTier):
    """
    Fixed-capacity key/value store with per-entry expiry.

    Usage:
        cache = LocalCache(max_entries=500)
        cache.set("articles:home:20:0", articles, ttl_seconds=300)
        cache.get("articles:home:20:0")
    """

    def __init__(
        self,
        max_entries: int = 500,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            max_entries: Hard ceiling on the number of stored entries
            sweep_interval: Seconds between expired-entry sweeps once started
            clock: Time source, injectable for tests
        """
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._max_entries = max_entries
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._stop_event = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        self._evictions = 0
        self._expirations = 0

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get_entry(key) is not None

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._expirations += 1
                return None
            return entry

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: int,
        stored_at: Optional[float] = None,
    ) -> bool:
        entry = CacheEntry(
            key=key,
            value=value,
            stored_at=self._clock() if stored_at is None else stored_at,
            ttl_seconds=ttl_seconds,
        )
        with self._lock:
            # Overwrites count as fresh insertions
            self._entries.pop(key, None)
            self._entries[key] = entry
            if len(self._entries) > self._max_entries:
                self._evict_oldest()
        return True

    def _evict_oldest(self) -> None:
        """Drop the oldest-inserted fraction of entries. Caller holds the lock."""
        count = max(1, math.ceil(len(self._entries) * EVICTION_FRACTION))
        for _ in range(count):
            self._entries.popitem(last=False)
        self._evictions += count
        logger.debug(f"Evicted {count} entries (ceiling {self._max_entries})")

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            to_delete = [k for k in self._entries if k.startswith(prefix)]
            for key in to_delete:
                del self._entries[key]
        if to_delete:
            logger.info(f"Deleted {len(to_delete)} local entries with prefix '{prefix}'")
        return len(to_delete)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    def sweep(self) -> int:
        """Physically remove every expired entry. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._expirations += len(expired)
        if expired:
            logger.debug(f"Swept {len(expired)} expired entries")
        return len(expired)

    def start(self) -> None:
        """Start the periodic expiry sweep."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            name="local-cache-sweep",
            daemon=True,
        )
        self._sweeper.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1.0)
            self._sweeper = None

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self._sweep_interval):
            try:
                self.sweep()
            except Exception as e:
                logger.warning(f"Local cache sweep failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_entries": self._max_entries,
                "evictions": self._evictions,
                "expirations": self._expirations,
            }
