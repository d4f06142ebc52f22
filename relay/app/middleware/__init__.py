"""Middleware package for the relay."""

from relay.app.middleware.cors import CORS_HEADERS, CORSHeadersMiddleware
from relay.app.middleware.rate_limit import (
    FixedWindowRateLimiter,
    RateLimitBackend,
    get_client_id,
    get_rate_limiter,
    reset_rate_limiter,
)
from relay.app.middleware.request_size import RequestSizeLimitMiddleware

__all__ = [
    "CORS_HEADERS",
    "CORSHeadersMiddleware",
    "FixedWindowRateLimiter",
    "RateLimitBackend",
    "get_client_id",
    "get_rate_limiter",
    "reset_rate_limiter",
    "RequestSizeLimitMiddleware",
]
