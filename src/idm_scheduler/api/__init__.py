"""Remote API access module.

This module provides:
- Transport: protocol and httpx implementation for single calls
- Rate limit tracking: RateLimitTracker, RateLimitInfo, QuotaHealth
- Scheduling: ApiScheduler, RequestPriority, SchedulerState
- Operations: CursorPaginator, BulkMutationExecutor, UndoLog
- SchedulerService: typed command / event channel
"""

from .cache import ResultCache
from .clock import SYSTEM_CLOCK, Clock
from .exceptions import (
    AuthorizationLostError,
    CancelledRequestError,
    ClientRequestError,
    InvalidStateError,
    PaginationError,
    SchedulerError,
    ThrottledError,
    TransientServerError,
)
from .operations import (
    BulkMutationExecutor,
    BulkResult,
    CursorPaginator,
    MutationRequest,
    ProgressTracker,
    UndoLog,
)
from .rate_limit import QuotaHealth, RateLimitInfo, RateLimitTracker
from .scheduling import (
    ApiScheduler,
    RequestPriority,
    SchedulerMetrics,
    SchedulerState,
    SchedulerStatus,
)
from .service import SchedulerService, SchedulerStateChanged
from .transport import HttpTransport, Transport, classify_failure

__all__ = [
    # Transport
    "HttpTransport",
    "Transport",
    "classify_failure",
    # Exceptions
    "AuthorizationLostError",
    "CancelledRequestError",
    "ClientRequestError",
    "InvalidStateError",
    "PaginationError",
    "SchedulerError",
    "ThrottledError",
    "TransientServerError",
    # Rate limit tracking
    "QuotaHealth",
    "RateLimitInfo",
    "RateLimitTracker",
    # Scheduling
    "ApiScheduler",
    "Clock",
    "ResultCache",
    "RequestPriority",
    "SYSTEM_CLOCK",
    "SchedulerMetrics",
    "SchedulerState",
    "SchedulerStatus",
    # Operations
    "BulkMutationExecutor",
    "BulkResult",
    "CursorPaginator",
    "MutationRequest",
    "ProgressTracker",
    "UndoLog",
    # Service
    "SchedulerService",
    "SchedulerStateChanged",
]
