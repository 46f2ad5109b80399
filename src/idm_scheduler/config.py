"""Configuration settings for the IDM request scheduler."""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ApiConfig(BaseModel):
    """Connection settings for the remote identity-management API."""

    base_url: str = Field(
        default="",
        description="Organization base URL (e.g., https://example.okta.com)",
    )
    api_token: str = Field(
        default="",
        description="API token sent as 'Authorization: SSWS <token>'",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Timeout for a single dispatched request",
    )


class RateLimitConfig(BaseModel):
    """Configuration for quota tracking.

    Controls thresholds for health classification and for when the
    scheduler stops dispatching while throttled.
    """

    warning_threshold_pct: float = Field(
        default=20.0,
        ge=0.0,
        le=100.0,
        description="% remaining below which the scheduler enters THROTTLED",
    )
    critical_threshold_pct: float = Field(
        default=5.0,
        ge=0.0,
        le=100.0,
        description="% remaining below which quota health is CRITICAL",
    )
    block_threshold_pct: float = Field(
        default=0.0,
        ge=0.0,
        le=100.0,
        description="% remaining at or below which dispatch waits for the quota reset",
    )


class PacingConfig(BaseModel):
    """Configuration for the delay between consecutive dispatches."""

    min_request_interval_ms: int = Field(
        default=50,
        ge=0,
        description="Minimum milliseconds between requests while quota is healthy",
    )
    throttled_min_interval_ms: int = Field(
        default=1000,
        ge=0,
        description="Minimum milliseconds between requests once below the warning threshold",
    )
    max_request_interval_ms: int = Field(
        default=60000,
        ge=100,
        description="Maximum milliseconds between requests (60 seconds)",
    )


class CooldownConfig(BaseModel):
    """Configuration for cooldown after an explicit rate-limit response.

    When a 429 carries no retry-after header the cooldown length is
    base * 2 ** (consecutive_429 - 1), capped at max, and never shorter
    than the time until the tracked quota resets.
    """

    base_backoff_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Cooldown for the first 429 without retry-after",
    )
    max_backoff_seconds: float = Field(
        default=600.0,
        gt=0.0,
        description="Upper bound for computed cooldowns",
    )


class BulkConfig(BaseModel):
    """Configuration for bulk mutation runs."""

    item_delay_ms: int = Field(
        default=100,
        ge=0,
        description="Fixed delay between bulk item submissions",
    )
    undo_history_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Maximum number of actions kept in the undo log",
    )


class PaginationConfig(BaseModel):
    """Configuration for cursor pagination."""

    page_size: int = Field(
        default=200,
        ge=1,
        le=1000,
        description="Items requested per page",
    )
    max_pages: int = Field(
        default=1000,
        ge=1,
        description="Safety limit on pages followed for one collection",
    )


class CacheConfig(BaseModel):
    """Configuration for the short-lived result cache."""

    default_ttl_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Default time-to-live for cached GET results (5 minutes)",
    )


class LoggingConfig(BaseModel):
    """Configuration for logging behavior.

    Controls file logging, rotation, and output format.
    """

    log_file: str | None = Field(
        default=None,
        description="Optional path for file logging (enables rotation)",
    )
    rotation: str = Field(
        default="10 MB",
        description="When to rotate log file (e.g., '10 MB', '1 day')",
    )
    retention: str = Field(
        default="7 days",
        description="How long to keep rotated logs",
    )
    serialize: bool = Field(
        default=False,
        description="If True, output JSON format to file",
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="IDM_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # --------------------------------------------------------------------------
    # Application
    # --------------------------------------------------------------------------
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # --------------------------------------------------------------------------
    # Remote API
    # --------------------------------------------------------------------------
    api: ApiConfig = Field(
        default_factory=ApiConfig,
        description="Remote API connection settings",
    )

    # --------------------------------------------------------------------------
    # Rate Limiting, Pacing & Cooldown
    # --------------------------------------------------------------------------
    rate_limit: RateLimitConfig = Field(
        default_factory=RateLimitConfig,
        description="Quota tracking configuration",
    )
    pacing: PacingConfig = Field(
        default_factory=PacingConfig,
        description="Request pacing configuration",
    )
    cooldown: CooldownConfig = Field(
        default_factory=CooldownConfig,
        description="Cooldown backoff configuration",
    )

    # --------------------------------------------------------------------------
    # Operations
    # --------------------------------------------------------------------------
    bulk: BulkConfig = Field(
        default_factory=BulkConfig,
        description="Bulk mutation configuration",
    )
    pagination: PaginationConfig = Field(
        default_factory=PaginationConfig,
        description="Cursor pagination configuration",
    )
    cache: CacheConfig = Field(
        default_factory=CacheConfig,
        description="Result cache configuration",
    )

    # --------------------------------------------------------------------------
    # Logging Configuration
    # --------------------------------------------------------------------------
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration (file output, rotation)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
