"""Per-client fixed-window rate limiter with temporary blocking."""

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import structlog
from cachetools import LRUCache
from slowapi.util import get_remote_address
from starlette.requests import Request

from cv_extract_api.config import get_settings
from cv_extract_api.errors import RateLimitExceeded
from cv_extract_api.observability import rate_limit_rejections_total

logger = structlog.get_logger()


@dataclass
class RateLimitEntry:
    """Request accounting for one client key."""

    client_key: str
    window_start: float
    request_count: int = 0
    blocked_until: float | None = None

    def is_blocked(self, now: float) -> bool:
        return self.blocked_until is not None and self.blocked_until > now

    def window_expired(self, now: float, window_seconds: float) -> bool:
        return now - self.window_start >= window_seconds


class RateLimitStore(Protocol):
    """Anything that can admit or reject a request for a client key."""

    def admit(self, client_key: str) -> None:
        """Admit the request or raise RateLimitExceeded."""
        ...


class InMemoryRateLimiter:
    """Thread-safe in-process limiter.

    Each client gets ``max_requests`` per fixed window. The request that goes
    over the ceiling starts a block of ``block_seconds``; while blocked every
    request is rejected without extending the block. State is per process, so
    horizontally scaled deployments enforce independent quotas.
    """

    def __init__(
        self,
        max_requests: int | None = None,
        window_seconds: float | None = None,
        block_seconds: float | None = None,
        max_clients: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the limiter.

        Args:
            max_requests: Requests allowed per window. Defaults to config value.
            window_seconds: Window length in seconds. Defaults to config value.
            block_seconds: Block duration once the ceiling is exceeded. Defaults to config value.
            max_clients: Maximum tracked client keys (LRU beyond that). Defaults to config value.
            clock: Monotonic time source in seconds, injectable for tests.
        """
        settings = get_settings()
        self._max_requests = (
            max_requests if max_requests is not None else settings.rate_limit_max_requests
        )
        self._window = (
            window_seconds if window_seconds is not None else settings.rate_limit_window_seconds
        )
        self._block = (
            block_seconds if block_seconds is not None else settings.rate_limit_block_seconds
        )
        self._max_clients = (
            max_clients if max_clients is not None else settings.rate_limit_max_clients
        )
        self._clock = clock
        self._entries: LRUCache[str, RateLimitEntry] = LRUCache(maxsize=self._max_clients)
        self._lock = threading.Lock()

    def admit(self, client_key: str) -> None:
        """Count a request for ``client_key``.

        Raises:
            RateLimitExceeded: client is blocked or just went over the ceiling.
        """
        with self._lock:
            now = self._clock()
            self._evict_expired(now)

            entry = self._entries.get(client_key)
            if entry is None:
                entry = RateLimitEntry(client_key=client_key, window_start=now)
                self._entries[client_key] = entry

            if entry.is_blocked(now):
                retry_after = math.ceil(entry.blocked_until - now)
                self._reject(client_key, retry_after, reason="blocked")

            if entry.blocked_until is not None or entry.window_expired(now, self._window):
                # Block served or window elapsed: start over
                entry.window_start = now
                entry.request_count = 1
                entry.blocked_until = None
            else:
                entry.request_count += 1

            if entry.request_count > self._max_requests:
                entry.blocked_until = now + self._block
                self._reject(client_key, math.ceil(self._block), reason="ceiling")

    def _reject(self, client_key: str, retry_after: int, reason: str) -> None:
        logger.warning(
            "Rate limit exceeded",
            client_key=client_key,
            retry_after_seconds=retry_after,
            reason=reason,
        )
        rate_limit_rejections_total.labels(reason=reason).inc()
        raise RateLimitExceeded(
            retry_after,
            f"client {client_key} rate limited ({reason}), retry after {retry_after}s",
        )

    def _evict_expired(self, now: float) -> int:
        expired = [
            key
            for key, entry in self._entries.items()
            if entry.window_expired(now, self._window) and not entry.is_blocked(now)
        ]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def get_entry(self, client_key: str) -> RateLimitEntry | None:
        """Peek at a client's entry without counting a request."""
        with self._lock:
            return self._entries.get(client_key)

    def count(self) -> int:
        """Number of tracked client keys."""
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        """Forget every client."""
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> dict:
        """Get statistics about the limiter."""
        with self._lock:
            return {
                "tracked_clients": len(self._entries),
                "max_requests": self._max_requests,
                "window_seconds": self._window,
                "block_seconds": self._block,
            }


def client_key_from_request(request: Request) -> str:
    """Derive the rate-limit bucket for a request.

    Prefers the first X-Forwarded-For hop, then X-Real-IP (both set by the
    serverless edge), then the socket peer.
    """
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip

    return get_remote_address(request)


# Global limiter instance
_rate_limiter: InMemoryRateLimiter | None = None


def get_rate_limiter() -> InMemoryRateLimiter:
    """Get the global rate limiter instance."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = InMemoryRateLimiter()
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Reset the global rate limiter (useful for testing)."""
    global _rate_limiter
    _rate_limiter = None
