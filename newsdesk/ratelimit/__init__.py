"""Token-bucket rate limiting for the text-generation API."""
from .token_bucket import (
    QueuedRequest,
    QueueTimeoutError,
    RateLimitedError,
    TokenBucketRateLimiter,
    estimate_tokens,
    get_rate_limiter,
)

__all__ = [
    "QueuedRequest",
    "QueueTimeoutError",
    "RateLimitedError",
    "TokenBucketRateLimiter",
    "estimate_tokens",
    "get_rate_limiter",
]
