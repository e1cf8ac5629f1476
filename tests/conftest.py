"""
Shared fixtures: the FastAPI app wired to in-memory components.
"""
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from config.settings import settings
from newsdesk.cache import CacheManager, LocalCache
from newsdesk.commentary import CommentaryJob, CommentaryWorker
from newsdesk.commentary.llm import CommentaryProvider
from newsdesk.main import (
    app,
    get_article_store,
    get_cache_manager,
    get_commentary_worker,
    get_prefetcher,
    get_provider,
    get_rate_limiter,
)
from newsdesk.prefetch import ListingPrefetcher
from newsdesk.ratelimit import TokenBucketRateLimiter


class MemoryArticleStore:
    """Dict-backed stand-in for SqlArticleStore."""

    def __init__(self, articles: Optional[List[Dict[str, Any]]] = None):
        self.articles: Dict[str, Dict[str, Any]] = {}
        for article in articles or []:
            self.articles[article["id"]] = dict(article)
        self.list_calls = 0

    def get_articles(self, section=None, skip=0, limit=20) -> List[Dict[str, Any]]:
        self.list_calls += 1
        rows = [
            a for a in self.articles.values()
            if not section or section == "home" or a.get("section") == section
        ]
        return rows[skip:skip + limit]

    def get_recent_articles(self, limit: int = 50) -> List[Dict[str, Any]]:
        return list(self.articles.values())[:limit]

    def get_article(self, article_id: str) -> Optional[Dict[str, Any]]:
        article = self.articles.get(article_id)
        return dict(article) if article else None

    def save_commentary(self, article_id: str, commentary: str) -> bool:
        if article_id not in self.articles:
            return False
        self.articles[article_id]["commentary"] = commentary
        return True

    def save_articles(self, articles: List[Dict[str, Any]]) -> int:
        for article in articles:
            self.articles[article["id"]] = dict(article)
        return len(articles)


class StaticProvider(CommentaryProvider):
    """Returns a fixed commentary and counts calls."""

    def __init__(self, text: Optional[str] = "Expert take.", available: bool = True):
        self.text = text
        self.available = available
        self.calls = 0

    def generate(self, job: CommentaryJob, style: str = "analyst") -> Optional[str]:
        self.calls += 1
        return self.text

    @property
    def provider_name(self) -> str:
        return "static"

    @property
    def is_available(self) -> bool:
        return self.available


@pytest.fixture
def article_store():
    return MemoryArticleStore([
        {"id": "a1", "title": "Senate passes budget", "abstract": "A vote.", "section": "politics", "commentary": None},
        {"id": "a2", "title": "Markets rally", "abstract": "Stocks up.", "section": "business", "commentary": None},
        {"id": "a3", "title": "Storm warning", "abstract": "Rain.", "section": "weather", "commentary": "Already done."},
    ])


@pytest.fixture
def provider():
    return StaticProvider()


@pytest.fixture
def cache_manager():
    manager = CacheManager(LocalCache(max_entries=100))
    yield manager
    manager.shutdown(wait=True)


@pytest.fixture
def rate_limiter():
    return TokenBucketRateLimiter(tokens_per_minute=5500, default_timeout=0.1)


@pytest.fixture
def commentary_worker(article_store, provider, rate_limiter):
    return CommentaryWorker(article_store, provider, rate_limiter)


@pytest.fixture
def prefetcher(article_store, cache_manager):
    return ListingPrefetcher(
        article_store,
        cache_manager,
        categories=["technology", "business"],
        fetch_fn=lambda section, limit: [],
    )


@pytest.fixture
def client(monkeypatch, article_store, provider, cache_manager, rate_limiter, commentary_worker, prefetcher):
    monkeypatch.setattr(settings, "nyt_api_key", None)
    app.dependency_overrides[get_article_store] = lambda: article_store
    app.dependency_overrides[get_provider] = lambda: provider
    app.dependency_overrides[get_cache_manager] = lambda: cache_manager
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[get_commentary_worker] = lambda: commentary_worker
    app.dependency_overrides[get_prefetcher] = lambda: prefetcher
    yield TestClient(app)
    app.dependency_overrides.clear()
