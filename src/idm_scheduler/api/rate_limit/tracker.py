"""Quota tracking from API response headers.

The remote API enforces limits per endpoint and reports them on every
response. The tracker keeps the latest reading per endpoint and exposes
the most restrictive unexpired reading, which is what pacing and the
cooldown controller act on.

Key Features:
- Passive tracking from response headers (zero API cost)
- Per-endpoint readings with expiry at the reset instant
- Configurable warning/critical thresholds
- Observable via snapshot and status methods
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlsplit

from idm_scheduler.config import RateLimitConfig, get_settings

from ..clock import SYSTEM_CLOCK, Clock
from .schemas import QuotaHealth, RateLimitInfo

logger = logging.getLogger(__name__)


def normalize_endpoint(endpoint: str) -> str:
    """Reduce an endpoint or URL to its path (query string dropped)."""
    return urlsplit(endpoint).path or "/"


class RateLimitTracker:
    """Tracks remote API quota from response headers.

    Usage:
        tracker = RateLimitTracker()

        response = await transport.send("/api/v1/groups")
        tracker.update_from_headers(response.headers, "/api/v1/groups")

        if tracker.is_below_warning():
            ...
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        """Initialize the tracker.

        Args:
            config: Optional rate limit configuration (uses settings if not provided)
            clock: Time source for expiry checks
        """
        self._config = config or get_settings().rate_limit
        self._clock = clock
        self._limits: dict[str, RateLimitInfo] = {}

    @property
    def config(self) -> RateLimitConfig:
        """Get the rate limit configuration."""
        return self._config

    # -------------------------------------------------------------------------
    # Passive Tracking (from Response Headers)
    # -------------------------------------------------------------------------
    def update_from_headers(
        self,
        headers: dict[str, str],
        endpoint: str,
    ) -> RateLimitInfo | None:
        """Record quota headers observed on a response.

        Args:
            headers: Response headers (lower-cased names)
            endpoint: Endpoint the response belongs to

        Returns:
            The parsed reading, or None if the headers were incomplete
        """
        path = normalize_endpoint(endpoint)
        info = RateLimitInfo.from_headers(headers, path, now=self._clock.now())
        if info is None:
            logger.debug("Missing rate limit headers for %s", path)
            return None

        self._limits[path] = info
        logger.debug(
            "Rate limit updated for %s: %d/%d remaining, reset in %.0fs",
            path,
            info.remaining,
            info.limit,
            info.seconds_until_reset(self._clock.now()),
        )
        return info

    def _prune_expired(self) -> None:
        """Drop readings whose window has reset."""
        now = self._clock.now()
        expired = [path for path, info in self._limits.items() if info.is_expired(now)]
        for path in expired:
            del self._limits[path]

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------
    def most_restrictive(self) -> RateLimitInfo | None:
        """Get the unexpired reading with the lowest remaining percentage."""
        self._prune_expired()
        if not self._limits:
            return None
        return min(self._limits.values(), key=lambda info: info.remaining_percent)

    def get_for_endpoint(self, endpoint: str) -> RateLimitInfo | None:
        """Get the unexpired reading for one endpoint."""
        self._prune_expired()
        return self._limits.get(normalize_endpoint(endpoint))

    def get_health(self, info: RateLimitInfo | None = None) -> QuotaHealth:
        """Get quota health (HEALTHY if unknown)."""
        info = info or self.most_restrictive()
        if info is None:
            return QuotaHealth.HEALTHY
        return info.get_health(
            self._config.warning_threshold_pct,
            self._config.critical_threshold_pct,
        )

    def is_below_warning(self, info: RateLimitInfo | None = None) -> bool:
        """Whether remaining quota is below the warning threshold."""
        info = info or self.most_restrictive()
        if info is None:
            return False
        return info.remaining_percent < self._config.warning_threshold_pct

    def is_blocked(self) -> bool:
        """Whether remaining quota is at or below the block threshold."""
        info = self.most_restrictive()
        if info is None:
            return False
        return info.remaining_percent <= self._config.block_threshold_pct

    def seconds_until_reset(self) -> float:
        """Seconds until the most restrictive window resets (0 if unknown)."""
        info = self.most_restrictive()
        if info is None:
            return 0.0
        return info.seconds_until_reset(self._clock.now())

    def reset(self) -> None:
        """Forget all readings."""
        self._limits.clear()
        logger.info("Reset all rate limit tracking")

    def to_dict(self) -> dict[str, Any]:
        """Export current readings as a dictionary (for logging/metrics)."""
        self._prune_expired()
        now = self._clock.now()
        most = self.most_restrictive()
        return {
            "most_restrictive": most.endpoint if most else None,
            "endpoints": {
                path: {
                    "limit": info.limit,
                    "remaining": info.remaining,
                    "remaining_percent": round(info.remaining_percent, 2),
                    "reset_at": info.reset_at.isoformat(),
                    "seconds_until_reset": round(info.seconds_until_reset(now), 1),
                    "health": self.get_health(info).value,
                }
                for path, info in self._limits.items()
            },
        }
