"""
Health and observability endpoints
"""


def test_health_endpoint_returns_200(client):
    """Test that /health returns HTTP 200"""
    response = client.get("/health")
    assert response.status_code == 200


def test_health_endpoint_returns_ok_status(client):
    """Test that /health reports status, limiter state and remote tier"""
    data = client.get("/health").json()
    assert data["status"] == "ok"
    assert data["rateLimiter"] == "healthy"
    assert data["remoteCache"] == "disabled"


def test_health_reports_limited_budget(client, rate_limiter):
    """Limiter below its healthy floor shows as limited"""
    rate_limiter.execute_request(lambda: None, estimated_cost=5000)
    data = client.get("/health").json()
    assert data["rateLimiter"] == "limited"


def test_cache_stats(client):
    """Listing twice records one miss and one hit"""
    client.get("/articles")
    client.get("/articles")
    stats = client.get("/cache/stats").json()
    assert stats["misses"] == 1
    assert stats["hits_fresh"] == 1
    assert stats["local"]["entries"] == 1


def test_rate_limiter_status(client):
    data = client.get("/rate-limiter/status").json()
    assert data["capacity"] == 5500
    assert data["available_tokens"] == 5500
    assert data["queue_length"] == 0
    assert "metrics" in data


def test_status_endpoints_use_realtime_cache_headers(client):
    response = client.get("/rate-limiter/status")
    assert response.headers["X-Cache-Strategy"] == "realtime"
    assert "max-age=10" in response.headers["Cache-Control"]


def test_commentary_stats(client):
    client.get("/articles")
    data = client.get("/commentary/stats").json()
    assert data["provider"] == "static"
    assert data["queue_length"] == 2
    assert data["processed_today"] == 0
