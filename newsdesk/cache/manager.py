"""
Main cache orchestration: two tiers behind stale-while-revalidate.
"""
import threading
import logging
import time
from typing import Dict, Optional, Callable, Any, Tuple
from concurrent.futures import ThreadPoolExecutor

from .core import CacheSource, ContentClass, SWRPolicy
from .coalescer import RequestCoalescer
from .local import LocalCache
from .remote import RemoteCache
from .ttl_policies import (
    build_policy_table,
    get_content_class_for_key,
    is_article_listing_key,
    policy_table_from_settings,
)

logger = logging.getLogger("cache.manager")

EMPTY_COLLECTION_TYPES = (list, tuple, dict, set, frozenset)


def _is_empty_collection(value: Any) -> bool:
    return isinstance(value, EMPTY_COLLECTION_TYPES) and len(value) == 0


class CacheManager:
    """
    Cache orchestrator with:
    - Bounded local tier, optional Redis tier
    - Stale-while-revalidate with background refresh
    - Single-flight coalescing of concurrent misses (optional)
    - Hit/miss statistics

    Usage:
        manager = CacheManager(LocalCache(max_entries=500))
        articles = manager.get_or_compute(
            "articles:home:20:0",
            lambda: store.get_recent_articles(20),
        )
    """

    def __init__(
        self,
        local: LocalCache,
        remote: Optional[RemoteCache] = None,
        policies: Optional[Dict[ContentClass, SWRPolicy]] = None,
        coalesce_misses: bool = True,
        max_revalidation_workers: int = 4,
        coalesce_timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            local: In-process tier
            remote: Shared tier; None or a disabled RemoteCache means local only
            policies: SWR policy per content class
            coalesce_misses: Share one compute between concurrent misses on a key
            max_revalidation_workers: Thread pool size for background refresh
            coalesce_timeout: Max seconds a coalesced caller waits
            clock: Time source, injectable for tests
        """
        self._local = local
        self._remote = remote if remote is not None and remote.is_enabled else None
        self._policies = policies or build_policy_table()
        self._coalescer = RequestCoalescer(timeout=coalesce_timeout) if coalesce_misses else None
        self._clock = clock

        # Background revalidation
        self._revalidation_pool = ThreadPoolExecutor(
            max_workers=max_revalidation_workers,
            thread_name_prefix="cache-revalidate",
        )
        self._revalidating: set = set()
        self._revalidating_lock = threading.Lock()

        self._stats_lock = threading.Lock()
        self._stats = {
            "hits_fresh": 0,
            "hits_stale": 0,
            "hits_remote": 0,
            "misses": 0,
            "revalidations": 0,
            "revalidation_errors": 0,
            "compute_errors": 0,
            "skipped_empty": 0,
        }

    @property
    def local(self) -> LocalCache:
        return self._local

    @property
    def remote(self) -> Optional[RemoteCache]:
        return self._remote

    def _count(self, stat: str) -> None:
        with self._stats_lock:
            self._stats[stat] += 1

    def policy_for(self, key: str) -> SWRPolicy:
        """Policy from the strategy table for the key's content class."""
        content_class = get_content_class_for_key(key)
        if content_class is not None and content_class in self._policies:
            return self._policies[content_class]
        return SWRPolicy()

    def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Any],
        policy: Optional[SWRPolicy] = None,
    ) -> Any:
        """
        Return the cached value for ``key``, computing it on a full miss.

        Raises:
            Exception: Whatever ``compute_fn`` raised on a full miss
        """
        value, _ = self.lookup(key, compute_fn, policy)
        return value

    def lookup(
        self,
        key: str,
        compute_fn: Callable[[], Any],
        policy: Optional[SWRPolicy] = None,
    ) -> Tuple[Any, CacheSource]:
        """Like get_or_compute, also reporting where the value came from."""
        policy = policy or self.policy_for(key)

        # L1: local tier
        entry = self._local.get_entry(key)
        if entry is not None:
            age = entry.age_seconds(self._clock())
            if age < policy.fresh_seconds:
                logger.debug(f"CACHE HIT (fresh): {key} [age={age:.1f}s]")
                self._count("hits_fresh")
                return entry.value, CacheSource.FRESH

            logger.info(f"CACHE HIT (stale): {key} [age={age:.1f}s]")
            self._count("hits_stale")
            if policy.allow_revalidate:
                self._trigger_background_revalidate(key, compute_fn, policy)
            return entry.value, CacheSource.STALE

        # L2: remote tier
        if self._remote is not None:
            remote_entry = self._remote.get_entry(key)
            if remote_entry is not None:
                logger.debug(f"CACHE HIT (remote): {key}")
                self._local.set(
                    key,
                    remote_entry.value,
                    remote_entry.ttl_seconds,
                    stored_at=remote_entry.stored_at,
                )
                self._count("hits_remote")
                return remote_entry.value, CacheSource.REMOTE

        logger.info(f"CACHE MISS: {key}")
        self._count("misses")
        try:
            if self._coalescer is not None:
                value = self._coalescer.run(
                    key, lambda: self._compute_and_store(key, compute_fn, policy)
                )
            else:
                value = self._compute_and_store(key, compute_fn, policy)
        except Exception:
            self._count("compute_errors")
            raise
        return value, CacheSource.UPSTREAM

    def _compute_and_store(
        self,
        key: str,
        compute_fn: Callable[[], Any],
        policy: SWRPolicy,
    ) -> Any:
        value = compute_fn()

        # A transient empty upstream response must not pin an empty listing
        if is_article_listing_key(key) and _is_empty_collection(value):
            logger.warning(f"Not caching empty articles result for key: {key}")
            self._count("skipped_empty")
            return value

        self._store(key, value, policy)
        return value

    def _store(self, key: str, value: Any, policy: SWRPolicy) -> None:
        stored_at = self._clock()
        self._local.set(key, value, policy.ttl_seconds, stored_at=stored_at)
        if self._remote is not None:
            self._remote.set(key, value, policy.ttl_seconds, stored_at=stored_at)

    def _trigger_background_revalidate(
        self,
        key: str,
        compute_fn: Callable[[], Any],
        policy: SWRPolicy,
    ) -> None:
        """Refresh ``key`` on the pool without blocking the caller."""
        with self._revalidating_lock:
            if key in self._revalidating:
                logger.debug(f"Already revalidating: {key}")
                return
            self._revalidating.add(key)

        def do_revalidate():
            try:
                self._compute_and_store(key, compute_fn, policy)
                self._count("revalidations")
                logger.debug(f"Background revalidation complete: {key}")
            except Exception as e:
                self._count("revalidation_errors")
                logger.warning(f"Background revalidation failed: {key} - {e}")
            finally:
                with self._revalidating_lock:
                    self._revalidating.discard(key)

        try:
            self._revalidation_pool.submit(do_revalidate)
        except RuntimeError as e:
            # Pool already shut down
            with self._revalidating_lock:
                self._revalidating.discard(key)
            logger.debug(f"Skipping revalidation for {key}: {e}")

    def invalidate(self, key: str) -> bool:
        """
        Remove a key from both tiers.

        Returns:
            True if the local tier held the key
        """
        found = self._local.delete(key)
        if self._remote is not None:
            self._remote.delete(key)
        logger.info(f"Invalidated cache: {key}")
        return found

    def invalidate_pattern(self, prefix: str) -> int:
        """
        Remove every key starting with ``prefix`` from both tiers.

        Returns:
            Number of local entries removed
        """
        count = self._local.delete_prefix(prefix)
        if self._remote is not None:
            self._remote.delete_prefix(prefix)
        return count

    def clear(self) -> int:
        """Clear both tiers and reset statistics."""
        count = self._local.clear()
        if self._remote is not None:
            self._remote.clear()
        with self._stats_lock:
            for stat in self._stats:
                self._stats[stat] = 0
        logger.info(f"Cleared {count} cache entries")
        return count

    def start(self) -> None:
        self._local.start()

    def shutdown(self, wait: bool = False) -> None:
        self._local.stop()
        self._revalidation_pool.shutdown(wait=wait)
        if self._remote is not None:
            self._remote.close()

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._stats_lock:
            stats = dict(self._stats)

        total_hits = stats["hits_fresh"] + stats["hits_stale"] + stats["hits_remote"]
        total_requests = total_hits + stats["misses"]
        hit_rate = (total_hits / total_requests * 100) if total_requests > 0 else 0

        with self._revalidating_lock:
            revalidating = len(self._revalidating)

        stats.update({
            "hits": total_hits,
            "hit_rate_percent": round(hit_rate, 1),
            "revalidating_count": revalidating,
            "local": self._local.get_stats(),
            "remote": self._remote.get_stats() if self._remote else {"enabled": False},
            "coalescer": self._coalescer.get_stats() if self._coalescer else None,
        })
        return stats


# Global cache manager instance
_cache_manager: Optional[CacheManager] = None


def build_cache_manager(settings) -> CacheManager:
    """Construct a cache manager wired from application settings."""
    local = LocalCache(
        max_entries=settings.local_cache_max_entries,
        sweep_interval=settings.local_cache_sweep_seconds,
    )
    remote = RemoteCache(
        settings.redis_url,
        namespace=settings.remote_cache_namespace,
        connect_timeout=settings.remote_cache_connect_timeout,
        command_timeout=settings.remote_cache_command_timeout,
        retry_seconds=settings.remote_cache_retry_seconds,
    )
    if not remote.is_enabled:
        logger.info("Redis not configured, using memory cache only")
    return CacheManager(
        local,
        remote,
        policies=policy_table_from_settings(settings),
        coalesce_misses=settings.cache_coalesce_misses,
        max_revalidation_workers=settings.cache_revalidation_workers,
    )


def get_cache_manager() -> CacheManager:
    """Get or create the global cache manager."""
    global _cache_manager
    if _cache_manager is None:
        from config.settings import settings
        _cache_manager = build_cache_manager(settings)
    return _cache_manager
