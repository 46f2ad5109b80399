"""Rate-limit-aware request scheduler for identity-management API bulk operations."""

__version__ = "0.3.0"
