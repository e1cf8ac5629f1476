"""
HTTP cache-control policy for CDN / browser caching.
"""
import hashlib
from typing import Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


# Strategy -> (max-age, s-maxage, stale-while-revalidate) in seconds
EDGE_STRATEGIES: Dict[str, Dict[str, int]] = {
    "static": {"max_age": 86400, "s_max_age": 86400, "stale_while_revalidate": 604800},
    "api": {"max_age": 300, "s_max_age": 300, "stale_while_revalidate": 3600},
    "dynamic": {"max_age": 60, "s_max_age": 60, "stale_while_revalidate": 300},
    "realtime": {"max_age": 10, "s_max_age": 10, "stale_while_revalidate": 60},
}

REALTIME_MARKERS = ("/performance", "/system-status", "/status", "/stats")
STATIC_MARKERS = ("/static", ".js", ".css")


def get_cache_headers(strategy: str = "api", custom_ttl: Optional[int] = None) -> Dict[str, str]:
    """
    Build caching headers for a strategy.

    Args:
        strategy: One of EDGE_STRATEGIES; unknown names fall back to "api"
        custom_ttl: Overrides the browser max-age
    """
    config = EDGE_STRATEGIES.get(strategy)
    if config is None:
        strategy, config = "api", EDGE_STRATEGIES["api"]
    max_age = custom_ttl or config["max_age"]
    return {
        "Cache-Control": (
            f"public, max-age={max_age}, s-maxage={config['s_max_age']}, "
            f"stale-while-revalidate={config['stale_while_revalidate']}"
        ),
        "CDN-Cache-Control": f"max-age={config['s_max_age']}",
        "Vary": "Accept-Encoding, Accept",
        "X-Cache-Strategy": strategy,
    }


def classify_path(path: str) -> str:
    """Pick the caching strategy for a request path."""
    if "/search" in path:
        return "dynamic"
    if any(marker in path for marker in REALTIME_MARKERS):
        return "realtime"
    if any(marker in path for marker in STATIC_MARKERS):
        return "static"
    return "api"


def compute_etag(body: bytes) -> str:
    return f'"{hashlib.md5(body).hexdigest()}"'


class EdgeCacheMiddleware(BaseHTTPMiddleware):
    """
    Applies cache headers to successful GET responses and answers
    conditional requests for JSON bodies with 304.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        if request.method != "GET" or response.status_code != 200:
            return response

        headers = get_cache_headers(classify_path(request.url.path))
        for name, value in headers.items():
            response.headers[name] = value

        if "application/json" not in response.headers.get("content-type", ""):
            return response

        body = b"".join([chunk async for chunk in response.body_iterator])
        etag = compute_etag(body)

        if request.headers.get("if-none-match") == etag:
            not_modified = {
                k: v for k, v in response.headers.items()
                if k.lower() not in ("content-length", "content-type")
            }
            not_modified["ETag"] = etag
            return Response(status_code=304, headers=not_modified)

        response_headers = dict(response.headers)
        response_headers["ETag"] = etag
        return Response(
            content=body,
            status_code=response.status_code,
            headers=response_headers,
        )
