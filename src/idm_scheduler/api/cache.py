"""Short-lived in-memory cache for GET results.

Entries are keyed by endpoint (path and query). A mutation on
``/api/v1/groups/00g1/users/00u1`` invalidates everything under
``/api/v1/groups/00g1/users``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from idm_scheduler.config import CacheConfig, get_settings
from idm_scheduler.logging import get_logger
from idm_scheduler.schemas import ApiResponse

from .clock import SYSTEM_CLOCK, Clock

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    """A cached response and its expiry."""

    response: ApiResponse
    stored_at: datetime
    expires_at: datetime


def parent_path(endpoint: str) -> str:
    """Resource collection a mutated endpoint belongs to."""
    path = endpoint.split("?", 1)[0].rstrip("/")
    return path.rsplit("/", 1)[0] if "/" in path else path


class ResultCache:
    """TTL cache of successful GET responses.

    Usage:
        cache = ResultCache()
        cache.set("/api/v1/groups/00g1/users", response)
        cached = cache.get("/api/v1/groups/00g1/users")
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self._config = config or get_settings().cache
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        self._prune()
        return len(self._entries)

    def __contains__(self, endpoint: object) -> bool:
        return isinstance(endpoint, str) and self.get(endpoint) is not None

    def get(self, endpoint: str) -> ApiResponse | None:
        """Cached response, or None if absent or expired."""
        entry = self._entries.get(endpoint)
        if entry is None:
            return None
        if self._clock.now() >= entry.expires_at:
            del self._entries[endpoint]
            return None
        return entry.response

    def set(self, endpoint: str, response: ApiResponse, ttl: float | None = None) -> None:
        """Store a successful response. Failures are never cached."""
        if not response.success:
            return
        now = self._clock.now()
        seconds = ttl if ttl is not None else self._config.default_ttl_seconds
        self._entries[endpoint] = CacheEntry(
            response=response,
            stored_at=now,
            expires_at=now + timedelta(seconds=seconds),
        )

    def time_remaining(self, endpoint: str) -> float | None:
        """Seconds until the entry expires, or None if not cached."""
        entry = self._entries.get(endpoint)
        if entry is None:
            return None
        return max(0.0, (entry.expires_at - self._clock.now()).total_seconds())

    def remove(self, endpoint: str) -> bool:
        return self._entries.pop(endpoint, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose endpoint starts with ``prefix``.

        Returns:
            Number of entries removed
        """
        stale = [key for key in self._entries if key.startswith(prefix)]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug("Invalidated {} cached entries under {}", len(stale), prefix)
        return len(stale)

    def invalidate_related(self, endpoint: str) -> int:
        """Drop entries affected by a mutation of ``endpoint``."""
        return self.invalidate_prefix(parent_path(endpoint))

    def clear(self) -> None:
        self._entries.clear()

    def _prune(self) -> None:
        now = self._clock.now()
        for key in [k for k, e in self._entries.items() if now >= e.expires_at]:
            del self._entries[key]
