"""
Scheduled listing pre-fetch.

Pulls top stories for the homepage and popular sections on a timer, saves
them, and rebuilds the first listing page of each section in the cache so
readers hit warm entries instead of paying the upstream cost.
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Protocol

from newsdesk.cache import CacheManager, article_list_key
from newsdesk.news_client import NewsAPIError, fetch_top_stories

logger = logging.getLogger("prefetch")

HOME_SECTION = "home"


class ListingStore(Protocol):
    """Data access the pre-fetcher needs."""

    def save_articles(self, articles: List[Dict[str, Any]]) -> int:
        ...

    def get_articles(self, section: Optional[str] = None, skip: int = 0, limit: int = 20) -> List[Dict[str, Any]]:
        ...


class ListingPrefetcher:
    """
    Refreshes the homepage and a fixed set of sections on two intervals.

    Each refresh fetches upstream, persists, drops the section's cached
    listings and recomputes the first page through the cache.
    """

    def __init__(
        self,
        article_store: ListingStore,
        cache: CacheManager,
        categories: Optional[List[str]] = None,
        home_interval: float = 900.0,
        categories_interval: float = 1800.0,
        limit: int = 20,
        fetch_fn: Callable[[str, int], List[Dict[str, Any]]] = fetch_top_stories,
        tick_interval: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            article_store: Persists fetched articles and serves listings
            cache: Cache holding the listing pages
            categories: Sections refreshed on the slower interval
            home_interval: Seconds between homepage refreshes
            categories_interval: Seconds between section refreshes
            limit: Articles fetched and cached per section
            fetch_fn: Upstream fetch, ``(section, limit) -> articles``
            tick_interval: Seconds between schedule checks once started
            clock: Monotonic time source, injectable for tests
        """
        self.article_store = article_store
        self.cache = cache
        self.categories = list(categories or [])
        self.home_interval = home_interval
        self.categories_interval = categories_interval
        self.limit = limit
        self.fetch_fn = fetch_fn
        self.tick_interval = tick_interval
        self._clock = clock

        self._last_home: Optional[float] = None
        self._last_categories: Optional[float] = None
        self._stats = {"runs": 0, "articles_saved": 0, "errors": 0}
        self._stats_lock = threading.Lock()

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def prefetch_section(self, section: str) -> int:
        """
        Refresh one section. Upstream failures are logged, not raised.

        Returns:
            Number of articles saved
        """
        try:
            articles = self.fetch_fn(section, self.limit)
        except NewsAPIError as e:
            with self._stats_lock:
                self._stats["errors"] += 1
            logger.error(f"Pre-fetch of '{section}' failed: {e}")
            return 0

        saved = self.article_store.save_articles(articles) if articles else 0

        self.cache.invalidate_pattern(f"articles:{section}:")
        if section != HOME_SECTION:
            # The homepage lists every section
            self.cache.invalidate_pattern(f"articles:{HOME_SECTION}:")
        self.cache.get_or_compute(
            article_list_key(section, self.limit, 0),
            lambda: self.article_store.get_articles(section, 0, self.limit),
        )

        with self._stats_lock:
            self._stats["runs"] += 1
            self._stats["articles_saved"] += saved
        logger.info(f"Pre-fetched {saved} '{section}' articles")
        return saved

    def prefetch_home(self) -> int:
        self._last_home = self._clock()
        return self.prefetch_section(HOME_SECTION)

    def prefetch_categories(self) -> int:
        self._last_categories = self._clock()
        return sum(self.prefetch_section(category) for category in self.categories)

    def run_due(self) -> List[str]:
        """Run whichever refreshes are due. Returns the names of those run."""
        now = self._clock()
        ran = []
        if self._last_home is None or now - self._last_home >= self.home_interval:
            self.prefetch_home()
            ran.append("home")
        if self.categories and (
            self._last_categories is None
            or now - self._last_categories >= self.categories_interval
        ):
            self.prefetch_categories()
            ran.append("categories")
        return ran

    # ===== Timer =====

    def start(self) -> None:
        if self.is_running:
            logger.warning("Pre-fetcher already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="listing-prefetch",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            f"Listing pre-fetch started: home every {self.home_interval:.0f}s, "
            f"{len(self.categories)} sections every {self.categories_interval:.0f}s"
        )

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None

    def _run(self) -> None:
        while True:
            try:
                self.run_due()
            except Exception as e:
                logger.error(f"Pre-fetch tick failed: {e}")
            if self._stop_event.wait(self.tick_interval):
                return

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats = dict(self._stats)
        stats.update({
            "is_running": self.is_running,
            "categories": self.categories,
        })
        return stats


# Global pre-fetcher instance
_prefetcher: Optional[ListingPrefetcher] = None


def get_prefetcher() -> ListingPrefetcher:
    """Get or create the global pre-fetcher."""
    global _prefetcher
    if _prefetcher is None:
        from config.settings import settings
        from newsdesk.cache import get_cache_manager
        from newsdesk.crud import SqlArticleStore

        _prefetcher = ListingPrefetcher(
            article_store=SqlArticleStore(),
            cache=get_cache_manager(),
            categories=settings.prefetch_categories,
            home_interval=settings.prefetch_home_seconds,
            categories_interval=settings.prefetch_categories_seconds,
            limit=settings.prefetch_limit,
        )
    return _prefetcher
