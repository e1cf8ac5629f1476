"""
SWR strategy table and cache-key conventions.
"""
from typing import Any, Dict, Optional
from urllib.parse import quote

from .core import ContentClass, Priority, SWRPolicy


DEFAULT_STALE_THRESHOLD = 60

# TTL configuration by content class (in seconds)
TTL_CONFIG: Dict[ContentClass, Dict[str, Any]] = {
    ContentClass.ARTICLES: {
        "ttl": 300,               # 5 minutes
        "priority": Priority.NORMAL,
    },
    ContentClass.SEARCH: {
        "ttl": 600,               # 10 minutes
        "priority": Priority.NORMAL,
    },
    ContentClass.COMMENTARY: {
        "ttl": 1800,              # 30 minutes
        "priority": Priority.NORMAL,
    },
    ContentClass.STATIC: {
        "ttl": 3600,              # 1 hour
        "priority": Priority.LOW, # Rarely changes, no background refresh
    },
    ContentClass.NYT_DATA: {
        "ttl": 900,               # 15 minutes
        "priority": Priority.NORMAL,
    },
}

# Key prefix -> content class
KEY_PREFIXES: Dict[str, ContentClass] = {
    "articles": ContentClass.ARTICLES,
    "search": ContentClass.SEARCH,
    "commentary": ContentClass.COMMENTARY,
    "static": ContentClass.STATIC,
    "nyt": ContentClass.NYT_DATA,
}


def build_policy_table(
    ttl_overrides: Optional[Dict[ContentClass, int]] = None,
    stale_threshold_seconds: int = DEFAULT_STALE_THRESHOLD,
) -> Dict[ContentClass, SWRPolicy]:
    """
    Build the per-class policy table, applying configured TTLs.

    Args:
        ttl_overrides: TTL in seconds per content class
        stale_threshold_seconds: Width of the stale window for every class
    """
    ttl_overrides = ttl_overrides or {}
    table = {}
    for content_class, config in TTL_CONFIG.items():
        ttl = ttl_overrides.get(content_class, config["ttl"])
        table[content_class] = SWRPolicy(
            ttl_seconds=ttl,
            stale_threshold_seconds=min(stale_threshold_seconds, ttl),
            priority=config["priority"],
        )
    return table


def policy_table_from_settings(settings) -> Dict[ContentClass, SWRPolicy]:
    """Policy table using the TTLs configured in ``settings``."""
    return build_policy_table(
        ttl_overrides={
            ContentClass.ARTICLES: settings.cache_ttl_articles,
            ContentClass.SEARCH: settings.cache_ttl_search,
            ContentClass.COMMENTARY: settings.cache_ttl_commentary,
            ContentClass.STATIC: settings.cache_ttl_static,
            ContentClass.NYT_DATA: settings.cache_ttl_nyt_data,
        },
        stale_threshold_seconds=settings.cache_stale_threshold_seconds,
    )


def get_content_class_for_key(key: str) -> Optional[ContentClass]:
    """Classify a cache key by its first ``:``-separated segment."""
    prefix = key.split(":", 1)[0]
    return KEY_PREFIXES.get(prefix)


def is_article_listing_key(key: str) -> bool:
    """True for keys that cache a list of articles."""
    return get_content_class_for_key(key) is ContentClass.ARTICLES


# ===== KEY BUILDERS =====

def article_list_key(category: str = "home", limit: int = 20, offset: int = 0) -> str:
    return f"articles:{category}:{limit}:{offset}"


def search_key(query: str, limit: int = 10) -> str:
    return f"search:{quote(query, safe='')}:{limit}"


def article_key(article_id: Any) -> str:
    return f"article:{article_id}"


def commentary_key(article_id: Any, style: str = "expertise") -> str:
    return f"commentary:{article_id}:{style}"


def nyt_key(section: str) -> str:
    return f"nyt:{section}"
