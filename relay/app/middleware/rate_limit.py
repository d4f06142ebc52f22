"""Per-process rate limiting for the relay.

A fixed-window counter keyed by client identifier, held in process memory.
The map is shared by every request served by this process and is never
persisted, so the configured limit is a soft, per-instance approximation:
horizontally scaled instances each keep their own counts and a restart
forgets them all.
"""

import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request

from relay.app.core.config import settings
from relay.app.core.logging import get_logger

logger = get_logger(__name__)

UNKNOWN_CLIENT = "unknown"


def monotonic_ms() -> float:
    """Default limiter clock in milliseconds."""
    return time.monotonic() * 1000


@dataclass
class RateLimitEntry:
    """Window state for one client."""
    count: int
    reset_at: float


class RateLimitBackend(ABC):
    """Abstract base class for rate limit backends.

    Callers only depend on ``admit`` so a shared external store can replace
    the in-memory map without touching the request handler.
    """

    @abstractmethod
    def admit(self, client_id: str) -> bool:
        """Record one request for ``client_id`` and report whether it may proceed.

        Never raises; a rejection is signalled by returning False.
        """

    @abstractmethod
    def cleanup(self) -> None:
        """Drop expired entries."""


class FixedWindowRateLimiter(RateLimitBackend):
    """In-memory fixed-window counter.

    The first request of a window creates ``{count: 1, reset_at: now + window}``.
    Later requests increment ``count`` until it reaches ``limit``; after that
    they are rejected until ``reset_at`` has passed, at which point the entry
    is replaced.

    The map is mutated without a lock. ``admit`` never awaits, so within one
    event loop each read-modify-write runs to completion; across worker
    processes there is no coordination at all.

    Memory is bounded by ``max_entries``: when exceeded, expired entries are
    purged and, if that is not enough, the least recently seen 20% evicted.
    An evicted client that was being rejected starts a fresh window on its
    next request, so under heavy churn the limit is approximate.
    """

    DEFAULT_MAX_ENTRIES = 10000

    def __init__(
        self,
        limit: int = 100,
        window_ms: int = 60000,
        clock: Callable[[], float] = monotonic_ms,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        """Initialize rate limiter.

        Args:
            limit: Maximum requests admitted per client per window
            window_ms: Window length in milliseconds
            clock: Callable returning the current time in milliseconds
            max_entries: Maximum number of tracked clients
        """
        self.limit = limit
        self.window_ms = window_ms
        self._clock = clock
        self._max_entries = max_entries
        self._entries: OrderedDict[str, RateLimitEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get_entry(self, client_id: str) -> Optional[RateLimitEntry]:
        return self._entries.get(client_id)

    def admit(self, client_id: str) -> bool:
        now = self._clock()
        entry = self._entries.get(client_id)

        if entry is None or entry.reset_at < now:
            self._entries[client_id] = RateLimitEntry(count=1, reset_at=now + self.window_ms)
            self._entries.move_to_end(client_id)
            self._enforce_max_entries(now)
            return True

        self._entries.move_to_end(client_id)

        if entry.count < self.limit:
            entry.count += 1
            return True

        return False

    def _enforce_max_entries(self, now: float) -> None:
        if len(self._entries) <= self._max_entries:
            return

        self._purge_expired(now)

        if len(self._entries) > self._max_entries:
            remove_count = max(1, int(self._max_entries * 0.2))
            for _ in range(min(remove_count, len(self._entries) - 1)):
                self._entries.popitem(last=False)

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.reset_at < now]
        for key in expired:
            del self._entries[key]

    def cleanup(self) -> None:
        self._purge_expired(self._clock())


def get_client_id(request: Request) -> str:
    """Derive the rate-limit key for a request.

    First entry of X-Forwarded-For, then the transport peer address, then
    a shared "unknown" bucket.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
        if client_ip:
            return client_ip
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT


_rate_limiter: Optional[RateLimitBackend] = None


def get_rate_limiter() -> RateLimitBackend:
    """Get the process-wide rate limiter, creating it from settings."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = FixedWindowRateLimiter(
            limit=settings.rate_limit_requests,
            window_ms=settings.rate_limit_window_ms,
            max_entries=settings.rate_limit_max_entries,
        )
        logger.debug(
            "Using in-memory rate limiter",
            extra={"limit": settings.rate_limit_requests, "window_ms": settings.rate_limit_window_ms},
        )
    return _rate_limiter


def reset_rate_limiter(limiter: Optional[RateLimitBackend] = None) -> None:
    """Replace (or drop) the process-wide limiter. Used by tests."""
    global _rate_limiter
    _rate_limiter = limiter
