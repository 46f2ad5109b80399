"""Scheduler error taxonomy."""

from __future__ import annotations


class SchedulerError(Exception):
    """Base exception for scheduled request errors."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class CancelledRequestError(SchedulerError):
    """Raised when a request is removed from the queue before dispatch."""

    pass


class ThrottledError(SchedulerError):
    """Raised when the remote API rejects a request as rate limited (429).

    The scheduler enters cooldown as a side effect; the request itself is
    not retried. Callers may resubmit once the cooldown ends.
    """

    def __init__(
        self,
        message: str,
        status: int | None = 429,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status)
        self.retry_after = retry_after


class AuthorizationLostError(SchedulerError):
    """Raised on 403: the caller's session or permissions changed mid-run."""

    pass


class ClientRequestError(SchedulerError):
    """Raised on any other 4xx response. Not retried."""

    pass


class TransientServerError(SchedulerError):
    """Raised on 5xx, network failure or request timeout.

    Retry policy belongs to the caller; the scheduler never retries
    implicitly so an outage is not amplified.
    """

    pass


class InvalidStateError(SchedulerError):
    """Raised when a request cannot be scheduled (no transport, stopped)."""

    pass


class PaginationError(SchedulerError):
    """Raised when a page of a paginated collection cannot be loaded."""

    def __init__(
        self,
        message: str,
        page_number: int,
        status: int | None = None,
    ) -> None:
        super().__init__(message, status)
        self.page_number = page_number
