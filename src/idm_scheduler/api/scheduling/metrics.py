"""Scheduler state snapshots, cumulative metrics and the state publisher."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Self

from pydantic import ConfigDict, Field, computed_field, model_validator

from idm_scheduler.schemas import SchemaBase

from ..rate_limit.schemas import RateLimitInfo
from .controller import SchedulerStatus

logger = logging.getLogger(__name__)


class SchedulerState(SchemaBase):
    """Read-only snapshot of the scheduler."""

    model_config = ConfigDict(frozen=True)

    status: SchedulerStatus = SchedulerStatus.IDLE
    queue_length: int = Field(default=0, ge=0)
    active_requests: int = Field(default=0, ge=0)
    rate_limit_info: RateLimitInfo | None = None
    cooldown_ends_at: datetime | None = None
    total_processed: int = Field(default=0, ge=0)
    error_count: int = Field(default=0, ge=0)
    last_error: str | None = None

    @model_validator(mode="after")
    def _check_cooldown_deadline(self) -> Self:
        in_cooldown = self.status is SchedulerStatus.COOLDOWN
        if in_cooldown != (self.cooldown_ends_at is not None):
            raise ValueError("cooldown_ends_at must be set exactly when status is cooldown")
        return self


class SchedulerMetrics(SchemaBase):
    """Cumulative counters since process start."""

    total_requests: int = 0
    total_processed: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    cancelled_requests: int = 0
    cache_hits: int = 0
    cooldown_events: int = 0
    throttle_events: int = 0
    average_wait_seconds: float = 0.0
    average_execution_seconds: float = 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success_rate(self) -> float:
        """Percentage of processed requests that succeeded."""
        if self.total_processed == 0:
            return 100.0
        return round(self.successful_requests / self.total_processed * 100, 2)


class MetricsRecorder:
    """Accumulates counters. Written only by the scheduler."""

    def __init__(self) -> None:
        self._metrics = SchedulerMetrics()
        self._total_wait = 0.0
        self._total_execution = 0.0
        self.last_error: str | None = None

    def record_submitted(self) -> None:
        self._metrics.total_requests += 1

    def record_cache_hit(self) -> None:
        self._metrics.cache_hits += 1

    def record_cancelled(self, count: int = 1) -> None:
        self._metrics.cancelled_requests += count

    def record_completed(
        self,
        *,
        success: bool,
        wait_seconds: float,
        execution_seconds: float,
        error: str | None = None,
    ) -> None:
        """Record one dispatched request that finished."""
        m = self._metrics
        m.total_processed += 1
        if success:
            m.successful_requests += 1
        else:
            m.failed_requests += 1
            self.last_error = error

        self._total_wait += max(0.0, wait_seconds)
        self._total_execution += max(0.0, execution_seconds)
        m.average_wait_seconds = round(self._total_wait / m.total_processed, 4)
        m.average_execution_seconds = round(self._total_execution / m.total_processed, 4)

    def record_transition(self, old: SchedulerStatus, new: SchedulerStatus) -> None:
        """Count entries into COOLDOWN and THROTTLED."""
        if new is SchedulerStatus.COOLDOWN:
            self._metrics.cooldown_events += 1
        elif new is SchedulerStatus.THROTTLED:
            self._metrics.throttle_events += 1

    @property
    def total_processed(self) -> int:
        return self._metrics.total_processed

    @property
    def error_count(self) -> int:
        return self._metrics.failed_requests

    def snapshot(self) -> SchedulerMetrics:
        """Independent copy of the current counters."""
        return self._metrics.model_copy()


StateListener = Callable[[SchedulerState], Awaitable[None] | None]


class StatePublisher:
    """Broadcasts state snapshots to subscribers.

    Listeners may be plain functions or coroutine functions. A failing
    listener is logged and never affects the scheduler or other listeners.
    Consecutive identical snapshots are published once.

    Usage:
        publisher = StatePublisher()
        unsubscribe = publisher.subscribe(lambda state: print(state.status))
        publisher.publish(scheduler.get_state())
        unsubscribe()
    """

    def __init__(self) -> None:
        self._listeners: list[StateListener] = []
        self._last: SchedulerState | None = None
        self._tasks: set[asyncio.Task[None]] = set()  # Prevent task GC

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    @property
    def last_published(self) -> SchedulerState | None:
        return self._last

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, state: SchedulerState) -> None:
        """Send a snapshot to every listener."""
        if state == self._last:
            return
        self._last = state

        for listener in list(self._listeners):
            try:
                result = listener(state)
            except Exception:
                logger.exception("State listener %r failed", listener)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._on_listener_done)

    def _on_listener_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Async state listener failed: %s", error, exc_info=error)

    async def drain(self) -> None:
        """Wait for outstanding async listener calls."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
