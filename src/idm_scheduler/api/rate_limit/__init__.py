"""Quota tracking for the remote API.

Readings come passively from response headers on every dispatched
request; nothing here issues API calls of its own.
"""

from .schemas import QuotaHealth, RateLimitInfo, parse_retry_after
from .tracker import RateLimitTracker, normalize_endpoint

__all__ = [
    "QuotaHealth",
    "RateLimitInfo",
    "RateLimitTracker",
    "normalize_endpoint",
    "parse_retry_after",
]
