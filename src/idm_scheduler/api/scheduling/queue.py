"""Priority queue of requests waiting for dispatch.

Ordering is strict priority buckets (HIGH > NORMAL > LOW) and, within a
bucket, strict FIFO by enqueue sequence. Low-priority work is therefore
only starved for as long as higher-priority work keeps arriving.
"""

from __future__ import annotations

import asyncio
import heapq
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from itertools import count
from typing import Any

from idm_scheduler.schemas import ApiResponse

from ..clock import SYSTEM_CLOCK, Clock
from ..exceptions import CancelledRequestError

logger = logging.getLogger(__name__)


class RequestPriority(IntEnum):
    """Priority levels for request scheduling.

    Lower values = higher priority (dispatched first).
    """

    HIGH = 1  # Interactive lookups, status checks
    NORMAL = 2  # Regular views and exports
    LOW = 3  # Background bulk work

    @classmethod
    def parse(cls, value: str | int | RequestPriority) -> RequestPriority:
        """Accept 'high' / 'normal' / 'low', an int, or a member."""
        if isinstance(value, RequestPriority):
            return value
        if isinstance(value, str):
            return cls[value.strip().upper()]
        return cls(value)


class RequestState(IntEnum):
    """State of a queued request."""

    PENDING = 1
    IN_FLIGHT = 2
    COMPLETED = 3
    FAILED = 4
    CANCELLED = 5


@dataclass(order=True)
class QueuedRequest:
    """A request waiting to be dispatched.

    Ordering is by (priority, sequence) for heapq.
    """

    priority: int = field(compare=True)
    sequence: int = field(compare=True)

    id: str = field(compare=False)
    endpoint: str = field(compare=False)
    method: str = field(compare=False)
    future: asyncio.Future[ApiResponse] = field(compare=False, repr=False)
    enqueued_at: datetime = field(compare=False)
    body: Any = field(default=None, compare=False, repr=False)
    origin: str = field(default="default", compare=False)
    state: RequestState = field(default=RequestState.PENDING, compare=False)
    cancelled: bool = field(default=False, compare=False)
    started_at: datetime | None = field(default=None, compare=False)
    completed_at: datetime | None = field(default=None, compare=False)

    @property
    def priority_name(self) -> str:
        """Lower-case priority name ('high', 'normal', 'low')."""
        return RequestPriority(self.priority).name.lower()

    @property
    def is_abandoned(self) -> bool:
        """True if the caller stopped waiting for this request."""
        return self.future.done()

    def cancel(self, reason: str = "Request cancelled") -> bool:
        """Mark cancelled and reject the caller's future.

        Returns:
            True if the future was still pending and has been rejected
        """
        self.cancelled = True
        self.state = RequestState.CANCELLED
        if self.future.done():
            return False
        self.future.set_exception(CancelledRequestError(reason))
        return True


class RequestQueue:
    """Holds requests not yet dispatched.

    Usage:
        queue = RequestQueue()
        request = queue.enqueue("/api/v1/groups", priority=RequestPriority.HIGH)

        next_request = queue.dequeue_next()
        ...
        next_request.future.set_result(response)

        # Reject everything still waiting
        queue.clear()
    """

    def __init__(
        self,
        clock: Clock = SYSTEM_CLOCK,
        on_abandoned: Callable[[QueuedRequest], None] | None = None,
    ) -> None:
        """Initialize an empty queue.

        Args:
            clock: Time source for enqueue timestamps
            on_abandoned: Called for each request dropped because its caller
                settled or cancelled the future while it was still queued
        """
        self._clock = clock
        self._on_abandoned = on_abandoned
        self._heap: list[QueuedRequest] = []
        self._sequence = count()

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)

    # -------------------------------------------------------------------------
    # Enqueue / Dequeue
    # -------------------------------------------------------------------------
    def enqueue(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any | None = None,
        *,
        priority: RequestPriority = RequestPriority.NORMAL,
        origin: str = "default",
    ) -> QueuedRequest:
        """Add a request.

        The returned request's ``future`` is the caller's handle; it is
        resolved or rejected exactly once.
        """
        loop = asyncio.get_running_loop()
        request = QueuedRequest(
            priority=int(priority),
            sequence=next(self._sequence),
            id=str(uuid.uuid4()),
            endpoint=endpoint,
            method=method.upper(),
            future=loop.create_future(),
            enqueued_at=self._clock.now(),
            body=body,
            origin=origin,
        )
        heapq.heappush(self._heap, request)
        request.future.add_done_callback(lambda _: self._discard_abandoned(request))

        logger.debug(
            "Enqueued request %s %s %s (priority=%s, origin=%s, queue_size=%d)",
            request.id[:8],
            request.method,
            endpoint,
            request.priority_name,
            origin,
            len(self._heap),
        )
        return request

    def dequeue_next(self) -> QueuedRequest | None:
        """Pop the highest-priority, oldest request.

        Requests whose caller already gave up are discarded.

        Returns:
            The next request or None if the queue is empty
        """
        while self._heap:
            request = heapq.heappop(self._heap)
            if request.cancelled or request.is_abandoned:
                logger.debug("Skipping abandoned request %s", request.id[:8])
                continue
            return request
        return None

    def peek(self) -> QueuedRequest | None:
        """The request that would be dispatched next (not removed)."""
        return self._heap[0] if self._heap else None

    def pending(self) -> list[QueuedRequest]:
        """Queued requests in dispatch order."""
        return sorted(self._heap)

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------
    def clear(self, reason: str = "Queue cleared") -> int:
        """Remove every queued request and reject each with Cancelled.

        Dispatched requests are not held here and are never affected.

        Returns:
            Number of requests removed
        """
        removed, self._heap = self._heap, []
        for request in removed:
            request.cancel(reason)
        if removed:
            logger.info("Cleared %d requests from queue", len(removed))
        return len(removed)

    def cancel_origin(self, origin: str, reason: str | None = None) -> int:
        """Cancel every queued request issued by one caller.

        Returns:
            Number of requests removed
        """
        return self._remove_where(
            lambda request: request.origin == origin,
            reason or f"Requests from '{origin}' cancelled",
        )

    def cancel(self, request_id: str, reason: str = "Request cancelled") -> bool:
        """Cancel a single queued request.

        Returns:
            True if the request was found in the queue
        """
        return (
            self._remove_where(lambda request: request.id == request_id, reason) > 0
        )

    def _discard_abandoned(self, request: QueuedRequest) -> None:
        """Drop a request whose future settled while it was still queued."""
        if request.state is not RequestState.PENDING:
            return
        for index, queued in enumerate(self._heap):
            if queued is request:
                self._heap.pop(index)
                heapq.heapify(self._heap)
                break
        else:
            return
        request.cancelled = True
        request.state = RequestState.CANCELLED
        logger.debug("Dropped abandoned request %s", request.id[:8])
        if self._on_abandoned is not None:
            self._on_abandoned(request)

    def _remove_where(
        self,
        predicate: Callable[[QueuedRequest], bool],
        reason: str,
    ) -> int:
        keep: list[QueuedRequest] = []
        removed: list[QueuedRequest] = []
        for request in self._heap:
            (removed if predicate(request) else keep).append(request)
        if not removed:
            return 0
        heapq.heapify(keep)
        self._heap = keep
        for request in removed:
            request.cancel(reason)
        logger.debug("Removed %d requests from queue (%s)", len(removed), reason)
        return len(removed)
