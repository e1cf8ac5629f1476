"""
Newsdesk - FastAPI application
Thin HTTP surface over the cache, rate limiter and commentary worker
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from config.settings import settings
from newsdesk.cache import (
    CacheManager,
    CacheSource,
    EdgeCacheMiddleware,
    Priority,
    SWRPolicy,
    article_list_key,
    commentary_key,
    get_cache_manager,
)
from newsdesk.commentary import CommentaryJob, CommentaryWorker, get_commentary_worker
from newsdesk.commentary.llm import (
    CommentaryAPIError,
    CommentaryProvider,
    CommentaryRateLimitError,
    build_commentary_prompt,
    get_commentary_provider,
)
from newsdesk.crud import SqlArticleStore
from newsdesk.news_client import NewsAPIError, fetch_top_stories
from newsdesk.prefetch import ListingPrefetcher, get_prefetcher
from newsdesk.ratelimit import RateLimitedError, TokenBucketRateLimiter, get_rate_limiter
from newsdesk import schemas

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger("main")

APP_VERSION = "v0.3.0"
APP_NAME = "Newsdesk"


# ===== DEPENDENCIES =====

_article_store: Optional[SqlArticleStore] = None
_commentary_provider: Optional[CommentaryProvider] = None


def get_article_store() -> SqlArticleStore:
    global _article_store
    if _article_store is None:
        _article_store = SqlArticleStore()
    return _article_store


def get_provider() -> CommentaryProvider:
    global _commentary_provider
    if _commentary_provider is None:
        _commentary_provider = get_commentary_provider()
    return _commentary_provider


@asynccontextmanager
async def lifespan(app: FastAPI):
    from newsdesk.db import init_db

    init_db()
    cache = get_cache_manager()
    limiter = get_rate_limiter()
    cache.start()
    limiter.start()

    worker = get_commentary_worker()
    if settings.commentary_worker_enabled and worker.provider.is_available:
        worker.start()
    else:
        logger.info("Commentary worker not started (disabled or no provider)")

    prefetcher = get_prefetcher()
    if settings.prefetch_enabled and settings.nyt_api_key:
        prefetcher.start()
    else:
        logger.info("Listing pre-fetch not started (disabled or no NYT key)")

    yield

    prefetcher.stop()
    worker.stop()
    limiter.stop()
    cache.shutdown()


app = FastAPI(
    title=APP_NAME,
    description="News aggregation backend with SWR caching and rate-limited AI commentary",
    version=APP_VERSION,
    lifespan=lifespan,
)
app.add_middleware(EdgeCacheMiddleware)


@app.exception_handler(RateLimitedError)
async def rate_limited_handler(request: Request, exc: RateLimitedError):
    retry_after = max(1, int(round(exc.retry_after)))
    return JSONResponse(
        status_code=503,
        content={"error": "Service busy, retry later", "retryAfter": retry_after},
        headers={"Retry-After": str(retry_after)},
    )


# ===== OBSERVABILITY =====

@app.get("/health", response_model=schemas.Health)
def health_check(
    cache: CacheManager = Depends(get_cache_manager),
    limiter: TokenBucketRateLimiter = Depends(get_rate_limiter),
):
    """Health check endpoint."""
    status = limiter.get_status()
    remote = cache.remote
    return {
        "status": "ok",
        "version": APP_VERSION,
        "rateLimiter": status["status"],
        "remoteCache": "connected" if remote is not None and remote.is_available else "disabled",
    }


@app.get("/cache/stats")
def cache_stats(cache: CacheManager = Depends(get_cache_manager)):
    """Get cache statistics."""
    return cache.get_stats()


@app.get("/rate-limiter/status")
def rate_limiter_status(limiter: TokenBucketRateLimiter = Depends(get_rate_limiter)):
    """Remaining budget, queue length and counters."""
    return limiter.get_status()


@app.get("/commentary/stats")
def commentary_stats(worker: CommentaryWorker = Depends(get_commentary_worker)):
    """Worker queue length and today's processed count."""
    return worker.get_stats()


@app.get("/prefetch/stats")
def prefetch_stats(prefetcher: ListingPrefetcher = Depends(get_prefetcher)):
    """Scheduled listing refresh counters."""
    return prefetcher.get_stats()


# ===== ARTICLES =====

@app.get("/articles", response_model=schemas.ArticleList)
def list_articles(
    response: Response,
    category: str = Query(default="home"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    cache: CacheManager = Depends(get_cache_manager),
    store: SqlArticleStore = Depends(get_article_store),
    worker: CommentaryWorker = Depends(get_commentary_worker),
) -> Dict[str, Any]:
    """
    Article listing, cached with stale-while-revalidate.

    Falls back to the NYT API when the store has nothing for the section.
    """
    def compute():
        articles = store.get_articles(category, offset, limit)
        if articles or offset > 0 or not settings.nyt_api_key:
            return articles
        fetched = fetch_top_stories(category, limit)
        store.save_articles(fetched)
        return store.get_articles(category, offset, limit)

    key = article_list_key(category, limit, offset)
    try:
        articles, source = cache.lookup(key, compute)
    except NewsAPIError as e:
        raise HTTPException(status_code=502, detail=f"Upstream news API failed: {e}")

    worker.enqueue(articles)
    response.headers["X-Cache"] = "MISS" if source is CacheSource.UPSTREAM else "HIT"
    response.headers["X-Cache-Key"] = key
    return {
        "articles": articles,
        "count": len(articles),
        "cacheSource": source.value,
    }


@app.get(
    "/articles/{article_id}/commentary",
    response_model=schemas.Commentary,
    response_model_exclude_none=True,
)
def article_commentary(
    article_id: str,
    style: str = Query(default="expertise"),
    cache: CacheManager = Depends(get_cache_manager),
    limiter: TokenBucketRateLimiter = Depends(get_rate_limiter),
    store: SqlArticleStore = Depends(get_article_store),
    provider: CommentaryProvider = Depends(get_provider),
) -> Dict[str, Any]:
    """
    On-demand commentary for one article, cached and rate limited.
    """
    article = store.get_article(article_id)
    if article is None:
        raise HTTPException(status_code=404, detail="Article not found")

    if article.get("commentary"):
        return {"articleId": article_id, "commentary": article["commentary"], "source": "stored"}

    if not provider.is_available:
        raise HTTPException(status_code=503, detail="Commentary generation is not configured")

    job = CommentaryJob.from_article(article, priority=10)
    prompt = build_commentary_prompt(job, style)

    def compute():
        text = limiter.execute_request(
            lambda: provider.generate(job, style),
            text=prompt,
            priority=Priority.HIGH,
        )
        if not text:
            raise CommentaryAPIError("No commentary generated")
        return text

    key = commentary_key(article_id, style)
    policy = cache.policy_for(key)
    try:
        # Stale commentary is served as-is, never regenerated in the background
        commentary, source = cache.lookup(
            key,
            compute,
            SWRPolicy(policy.ttl_seconds, policy.stale_threshold_seconds, Priority.LOW),
        )
    except CommentaryRateLimitError as e:
        raise HTTPException(status_code=503, detail=str(e), headers={"Retry-After": "60"})
    except (CommentaryAPIError, TimeoutError) as e:
        raise HTTPException(status_code=502, detail=str(e))

    return {
        "articleId": article_id,
        "commentary": commentary,
        "source": "ai" if source is CacheSource.UPSTREAM else "cache",
        "style": style,
    }
