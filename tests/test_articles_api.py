"""
Article listing and commentary endpoints, including edge cache headers.
"""
import pytest

from config.settings import settings
from newsdesk.cache import classify_path, get_cache_headers
from newsdesk.news_client import NewsAPIError


# =============================================================================
# Listing
# =============================================================================

def test_list_articles_miss_then_hit(client, article_store):
    first = client.get("/articles")
    second = client.get("/articles")

    assert first.status_code == 200
    assert first.headers["X-Cache"] == "MISS"
    assert first.headers["X-Cache-Key"] == "articles:home:20:0"
    assert first.json()["count"] == 3
    assert first.json()["cacheSource"] == "upstream"

    assert second.headers["X-Cache"] == "HIT"
    assert second.json()["cacheSource"] == "fresh"
    assert article_store.list_calls == 1


def test_list_articles_by_category(client):
    data = client.get("/articles", params={"category": "politics"}).json()
    assert [a["id"] for a in data["articles"]] == ["a1"]


def test_listing_queues_articles_without_commentary(client, commentary_worker):
    client.get("/articles")
    assert commentary_worker.queue_length == 2
    assert not commentary_worker.is_queued("a3")


def test_empty_listing_is_not_cached(client, article_store):
    client.get("/articles", params={"category": "sports"})
    client.get("/articles", params={"category": "sports"})
    assert article_store.list_calls == 2


def test_empty_listing_falls_back_to_news_api(client, monkeypatch, article_store):
    fetched = [{"id": "nyt1", "title": "Fresh from NYT", "section": "science", "commentary": None}]
    monkeypatch.setattr(settings, "nyt_api_key", "test-key")
    monkeypatch.setattr("newsdesk.main.fetch_top_stories", lambda section, limit: fetched)

    data = client.get("/articles", params={"category": "science"}).json()

    assert [a["id"] for a in data["articles"]] == ["nyt1"]
    assert "nyt1" in article_store.articles


def test_news_api_failure_returns_502(client, monkeypatch):
    def failing(section, limit):
        raise NewsAPIError("503 from upstream")

    monkeypatch.setattr(settings, "nyt_api_key", "test-key")
    monkeypatch.setattr("newsdesk.main.fetch_top_stories", failing)

    response = client.get("/articles", params={"category": "science"})
    assert response.status_code == 502


def test_limit_is_validated(client):
    assert client.get("/articles", params={"limit": 0}).status_code == 422


# =============================================================================
# Commentary
# =============================================================================

def test_commentary_generated_then_cached(client, provider):
    first = client.get("/articles/a1/commentary")
    second = client.get("/articles/a1/commentary")

    assert first.status_code == 200
    assert first.json()["commentary"] == "Expert take."
    assert first.json()["source"] == "ai"
    assert second.json()["source"] == "cache"
    assert provider.calls == 1


def test_stored_commentary_is_returned(client, provider):
    data = client.get("/articles/a3/commentary").json()
    assert data == {"articleId": "a3", "commentary": "Already done.", "source": "stored"}
    assert provider.calls == 0


def test_commentary_for_missing_article(client):
    assert client.get("/articles/missing/commentary").status_code == 404


def test_commentary_without_provider(client, provider):
    provider.available = False
    assert client.get("/articles/a1/commentary").status_code == 503


def test_empty_commentary_is_a_bad_gateway(client, provider):
    provider.text = None
    assert client.get("/articles/a1/commentary").status_code == 502


def test_rate_limited_commentary_returns_503(client, rate_limiter):
    rate_limiter.execute_request(lambda: None, estimated_cost=5500)

    response = client.get("/articles/a1/commentary")

    assert response.status_code == 503
    assert response.json()["error"] == "Service busy, retry later"
    assert int(response.headers["Retry-After"]) >= 1
    assert response.json()["retryAfter"] >= 1


# =============================================================================
# Edge cache policy
# =============================================================================

@pytest.mark.parametrize("path,strategy", [
    ("/search", "dynamic"),
    ("/articles/search", "dynamic"),
    ("/rate-limiter/status", "realtime"),
    ("/cache/stats", "realtime"),
    ("/static/app.js", "static"),
    ("/bundle.css", "static"),
    ("/articles", "api"),
])
def test_classify_path(path, strategy):
    assert classify_path(path) == strategy


def test_cache_headers():
    headers = get_cache_headers("api")
    assert headers["Cache-Control"] == "public, max-age=300, s-maxage=300, stale-while-revalidate=3600"
    assert headers["CDN-Cache-Control"] == "max-age=300"
    assert headers["Vary"] == "Accept-Encoding, Accept"


def test_cache_headers_custom_ttl_and_unknown_strategy():
    assert "max-age=42," in get_cache_headers("dynamic", custom_ttl=42)["Cache-Control"]
    assert get_cache_headers("nonsense")["X-Cache-Strategy"] == "api"


def test_listing_gets_edge_headers_and_etag(client):
    response = client.get("/articles")
    assert response.headers["X-Cache-Strategy"] == "api"
    assert response.headers["ETag"].startswith('"')
    # Route headers survive the middleware
    assert response.headers["X-Cache"] == "MISS"


def test_conditional_request_returns_304(client):
    client.get("/articles")
    cached = client.get("/articles")
    etag = cached.headers["ETag"]

    response = client.get("/articles", headers={"If-None-Match": etag})

    assert response.status_code == 304
    assert response.content == b""
    assert response.headers["ETag"] == etag


def test_error_responses_get_no_cache_headers(client):
    response = client.get("/articles/missing/commentary")
    assert "X-Cache-Strategy" not in response.headers
