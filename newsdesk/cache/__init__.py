"""
Two-tier caching with stale-while-revalidate, request coalescing and
edge cache-control policy.
"""
from .core import CacheEntry, CacheSource, CacheTier, ContentClass, Priority, SWRPolicy
from .local import LocalCache
from .remote import RemoteCache
from .ttl_policies import (
    TTL_CONFIG,
    build_policy_table,
    policy_table_from_settings,
    get_content_class_for_key,
    is_article_listing_key,
    article_list_key,
    article_key,
    commentary_key,
    search_key,
    nyt_key,
)
from .coalescer import RequestCoalescer
from .manager import CacheManager, build_cache_manager, get_cache_manager
from .edge import EdgeCacheMiddleware, classify_path, get_cache_headers

__all__ = [
    # Core types
    "CacheEntry",
    "CacheSource",
    "CacheTier",
    "ContentClass",
    "Priority",
    "SWRPolicy",
    # Tiers
    "LocalCache",
    "RemoteCache",
    # Policies and keys
    "TTL_CONFIG",
    "build_policy_table",
    "policy_table_from_settings",
    "get_content_class_for_key",
    "is_article_listing_key",
    "article_list_key",
    "article_key",
    "commentary_key",
    "search_key",
    "nyt_key",
    # Coalescing
    "RequestCoalescer",
    # Manager
    "CacheManager",
    "build_cache_manager",
    "get_cache_manager",
    # Edge
    "EdgeCacheMiddleware",
    "classify_path",
    "get_cache_headers",
]
