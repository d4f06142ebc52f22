"""Shared HTTP client management for connection pooling.

One ``httpx.AsyncClient`` is created on application startup and reused by
every provider call. Outside the lifespan (scripts, bare test clients)
providers fall back to a short-lived client of their own.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx

from relay.app.core.config import settings


_shared_http_client: httpx.AsyncClient | None = None


def build_timeout(timeout: float | None = None) -> httpx.Timeout:
    """Build the granular timeout used for provider calls.

    ``timeout`` overrides the read deadline; connect, write and pool
    phases keep their configured values.
    """
    return httpx.Timeout(
        timeout if timeout is not None else settings.upstream_timeout,
        connect=settings.httpx_connect_timeout,
        write=settings.httpx_write_timeout,
        pool=settings.httpx_pool_timeout,
    )


def build_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=settings.httpx_max_connections,
        max_keepalive_connections=settings.httpx_max_keepalive_connections,
        keepalive_expiry=settings.httpx_keepalive_expiry,
    )


def get_http_client() -> httpx.AsyncClient:
    """Get the shared HTTP client instance.

    Raises:
        RuntimeError: If the HTTP client has not been initialized.
    """
    if _shared_http_client is None:
        raise RuntimeError(
            "HTTP client not initialized. Ensure lifespan context is active."
        )
    return _shared_http_client


def get_optional_http_client() -> httpx.AsyncClient | None:
    """FastAPI dependency: the shared client, or None outside the lifespan."""
    return _shared_http_client


@asynccontextmanager
async def init_http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Initialize and yield the shared HTTP client.

    Used from the FastAPI lifespan:

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with init_http_client():
                yield
    """
    global _shared_http_client

    _shared_http_client = httpx.AsyncClient(timeout=build_timeout(), limits=build_limits())

    try:
        yield _shared_http_client
    finally:
        if _shared_http_client is not None:
            await _shared_http_client.aclose()
            _shared_http_client = None


def create_http_client(timeout: float | None = None) -> httpx.AsyncClient:
    """Create a standalone client with the configured pool settings.

    The caller owns the returned client and must close it.
    """
    return httpx.AsyncClient(timeout=build_timeout(timeout), limits=build_limits())
