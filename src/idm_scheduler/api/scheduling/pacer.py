"""Spacing between consecutive dispatches.

While quota is healthy (or unknown) requests are spaced by the minimum
interval. Once the most restrictive reading drops below the warning
threshold the remaining quota is spread over the rest of the window:

    base_delay = seconds_until_reset / remaining
    delay = base_delay * throttle_multiplier

clamped between the throttled minimum and the configured maximum.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from idm_scheduler.config import PacingConfig, get_settings

from ..clock import SYSTEM_CLOCK, Clock
from ..rate_limit.schemas import QuotaHealth, RateLimitInfo
from ..rate_limit.tracker import RateLimitTracker

logger = logging.getLogger(__name__)

_THROTTLE_MULTIPLIERS = {
    QuotaHealth.HEALTHY: 1.0,
    QuotaHealth.WARNING: 1.5,
    QuotaHealth.CRITICAL: 2.0,
    QuotaHealth.EXHAUSTED: 4.0,
}


class RequestPacer:
    """Calculates the delay to hold before the next dispatch.

    Usage:
        pacer = RequestPacer(tracker)

        pacer.on_request_start()
        response = await transport.send(...)
        tracker.update_from_headers(response.headers, endpoint)

        next_dispatch_in = pacer.get_recommended_delay()
    """

    def __init__(
        self,
        tracker: RateLimitTracker,
        config: PacingConfig | None = None,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        """Initialize the request pacer.

        Args:
            tracker: Quota tracker to read readings from
            config: Optional pacing configuration (uses settings if not provided)
            clock: Time source
        """
        self._tracker = tracker
        self._config = config or get_settings().pacing
        self._clock = clock

        self._last_request_at: datetime | None = None
        self._requests_in_window: list[datetime] = []

    @property
    def config(self) -> PacingConfig:
        """Get the pacing configuration."""
        return self._config

    # -------------------------------------------------------------------------
    # Delay Calculation
    # -------------------------------------------------------------------------
    def get_recommended_delay(self) -> float:
        """Seconds to hold before the next dispatch."""
        info = self._tracker.most_restrictive()
        if info is None or not self._tracker.is_below_warning(info):
            return self._config.min_request_interval_ms / 1000
        return self._throttled_delay(info)

    def _throttled_delay(self, info: RateLimitInfo) -> float:
        floor = self._config.throttled_min_interval_ms / 1000
        ceiling = self._config.max_request_interval_ms / 1000

        seconds_until_reset = info.seconds_until_reset(self._clock.now())
        if seconds_until_reset <= 0:
            return floor

        base_delay = seconds_until_reset / max(1, info.remaining)
        adjusted = base_delay * self._get_throttle_multiplier(self._tracker.get_health(info))
        return max(floor, min(adjusted, ceiling))

    def _get_throttle_multiplier(self, health: QuotaHealth) -> float:
        """1.0x healthy, 1.5x warning, 2.0x critical, 4.0x exhausted."""
        return _THROTTLE_MULTIPLIERS.get(health, 1.0)

    # -------------------------------------------------------------------------
    # Request Lifecycle
    # -------------------------------------------------------------------------
    def on_request_start(self) -> None:
        """Record a dispatch for velocity statistics."""
        now = self._clock.now()
        self._last_request_at = now
        self._requests_in_window.append(now)
        self._prune_window(now)

    def _prune_window(self, now: datetime) -> None:
        cutoff = now - timedelta(seconds=60)
        self._requests_in_window = [t for t in self._requests_in_window if t > cutoff]

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------
    @property
    def requests_per_minute(self) -> float:
        """Dispatches in the last 60 seconds."""
        self._prune_window(self._clock.now())
        return float(len(self._requests_in_window))

    @property
    def last_request_at(self) -> datetime | None:
        """Timestamp of the last dispatch."""
        return self._last_request_at

    def get_stats(self) -> dict[str, float | int | str | None]:
        """Get pacer statistics for monitoring."""
        info = self._tracker.most_restrictive()
        health = self._tracker.get_health(info)
        return {
            "requests_per_minute": round(self.requests_per_minute, 2),
            "recommended_delay_ms": round(self.get_recommended_delay() * 1000, 2),
            "throttle_multiplier": self._get_throttle_multiplier(health),
            "health": health.value,
            "remaining": info.remaining if info else None,
            "seconds_until_reset": (
                round(info.seconds_until_reset(self._clock.now()), 1) if info else None
            ),
        }
