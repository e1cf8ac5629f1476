"""
Core cache data structures and the tier interface.
"""
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class Priority(Enum):
    """Priority of a cached computation or a rate-limited request."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    @classmethod
    def coerce(cls, value: Any) -> "Priority":
        """Accept either a Priority or its string value ("high", ...)."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.NORMAL


class ContentClass(Enum):
    """Content classes with their own SWR strategy."""
    ARTICLES = "articles"       # Article listings
    SEARCH = "search"
    COMMENTARY = "commentary"   # AI-generated derived content
    STATIC = "static"
    NYT_DATA = "nyt_data"       # Raw upstream API payloads


class CacheSource(Enum):
    """Where a value returned by the orchestrator came from."""
    FRESH = "fresh"       # Local tier, within the fresh window
    STALE = "stale"       # Local tier, inside the stale window, revalidating
    REMOTE = "remote"     # Remote tier hit
    UPSTREAM = "upstream" # Computed by the caller-supplied function


@dataclass
class SWRPolicy:
    """
    Stale-while-revalidate policy for one cache lookup.

    An entry is fresh for ``ttl_seconds - stale_threshold_seconds`` after it
    is stored, then stale (served, refreshed in the background) until
    ``ttl_seconds``, then gone.
    """
    ttl_seconds: int = 300
    stale_threshold_seconds: int = 60
    priority: Priority = Priority.NORMAL

    def __post_init__(self):
        self.priority = Priority.coerce(self.priority)

    @property
    def fresh_seconds(self) -> int:
        return max(0, self.ttl_seconds - self.stale_threshold_seconds)

    @property
    def allow_revalidate(self) -> bool:
        return self.priority is not Priority.LOW


@dataclass
class CacheEntry:
    """
    A value held by a cache tier together with its storage time and TTL.
    """
    key: str
    value: Any
    stored_at: float
    ttl_seconds: int

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl_seconds

    def age_seconds(self, now: Optional[float] = None) -> float:
        """Seconds since the value was stored."""
        now = time.time() if now is None else now
        return now - self.stored_at

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now >= self.expires_at

    def is_fresh(self, stale_threshold_seconds: int, now: Optional[float] = None) -> bool:
        """True while the entry is younger than ttl - stale threshold."""
        return self.age_seconds(now) < (self.ttl_seconds - stale_threshold_seconds)


class CacheTier(ABC):
    """
    Abstract cache tier.

    Implementations must never raise from these operations for reasons
    outside the caller's control; an unusable tier behaves as empty.
    """

    @abstractmethod
    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the unexpired entry for ``key`` or None."""
        pass

    def get(self, key: str) -> Optional[Any]:
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    @abstractmethod
    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: int,
        stored_at: Optional[float] = None,
    ) -> bool:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def delete_prefix(self, prefix: str) -> int:
        """Delete all keys starting with ``prefix``; returns count removed."""
        pass

    @abstractmethod
    def clear(self) -> int:
        pass
