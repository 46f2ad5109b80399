"""Pydantic schemas for API quota data.

These schemas represent rate limit information parsed from the
``x-rate-limit-*`` response headers and the ``retry-after`` header.
"""

import math
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from enum import StrEnum
from typing import Self

from pydantic import Field, computed_field

from idm_scheduler.schemas import SchemaBase

LIMIT_HEADER = "x-rate-limit-limit"
REMAINING_HEADER = "x-rate-limit-remaining"
RESET_HEADER = "x-rate-limit-reset"
RETRY_AFTER_HEADER = "retry-after"


class QuotaHealth(StrEnum):
    """Quota health classification.

    Thresholds are configurable but defaults are:
    - HEALTHY: >= 20% remaining
    - WARNING: 5-20% remaining
    - CRITICAL: < 5% remaining
    - EXHAUSTED: 0 remaining
    """

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    EXHAUSTED = "exhausted"


class RateLimitInfo(SchemaBase):
    """Quota state for one endpoint as reported by the API."""

    limit: int = Field(ge=0, description="Requests allowed per window")
    remaining: int = Field(ge=0, description="Requests remaining in current window")
    reset_at: datetime = Field(description="UTC datetime when the window resets")
    endpoint: str = Field(description="Endpoint path the headers were observed on")
    observed_at: datetime = Field(description="When the headers were observed")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def remaining_percent(self) -> float:
        """Percentage of quota remaining (0.0 to 100.0)."""
        if self.limit == 0:
            return 0.0
        return (self.remaining / self.limit) * 100

    def seconds_until_reset(self, now: datetime | None = None) -> float:
        """Seconds until the window resets (0 if already past)."""
        delta = self.reset_at - (now or datetime.now(UTC))
        return max(0.0, delta.total_seconds())

    def is_expired(self, now: datetime | None = None) -> bool:
        """Whether the reset instant has passed."""
        return (now or datetime.now(UTC)) >= self.reset_at

    def get_health(
        self,
        warning_threshold: float = 20.0,
        critical_threshold: float = 5.0,
    ) -> QuotaHealth:
        """Classify the remaining quota.

        Args:
            warning_threshold: % remaining below which health is WARNING
            critical_threshold: % remaining below which health is CRITICAL

        Returns:
            QuotaHealth enum value
        """
        if self.remaining == 0:
            return QuotaHealth.EXHAUSTED
        if self.remaining_percent >= warning_threshold:
            return QuotaHealth.HEALTHY
        if self.remaining_percent >= critical_threshold:
            return QuotaHealth.WARNING
        return QuotaHealth.CRITICAL

    @classmethod
    def from_headers(
        cls,
        headers: dict[str, str],
        endpoint: str,
        now: datetime | None = None,
    ) -> Self | None:
        """Parse quota headers from a response.

        Returns None unless limit, remaining and reset are all present
        and numeric, and reset is a representable timestamp.

        Args:
            headers: Response headers (lower-cased names)
            endpoint: Endpoint the response belongs to
            now: Observation time (defaults to current UTC time)

        Returns:
            RateLimitInfo or None
        """
        try:
            limit = int(headers[LIMIT_HEADER])
            remaining = int(headers[REMAINING_HEADER])
            reset_at = datetime.fromtimestamp(int(headers[RESET_HEADER]), tz=UTC)
        except (KeyError, ValueError, OverflowError, OSError):
            return None

        return cls(
            limit=max(0, limit),
            remaining=max(0, remaining),
            reset_at=reset_at,
            endpoint=endpoint,
            observed_at=now or datetime.now(UTC),
        )


def parse_retry_after(
    headers: dict[str, str],
    now: datetime | None = None,
) -> float | None:
    """Parse a ``retry-after`` header into seconds.

    Accepts both delta-seconds and HTTP-date forms. Non-finite values
    (``inf``, ``nan``) are treated as unparseable.

    Args:
        headers: Response headers (lower-cased names)
        now: Reference time for HTTP-date values

    Returns:
        Seconds to wait, or None if absent or unparseable
    """
    value = headers.get(RETRY_AFTER_HEADER)
    if not value:
        return None

    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return max(0.0, seconds) if math.isfinite(seconds) else None

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=UTC)
    return max(0.0, (retry_at - (now or datetime.now(UTC))).total_seconds())
