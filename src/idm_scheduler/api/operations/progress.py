"""Progress tracking for bulk operations.

Observers register a callback and receive a ``ProgressUpdate`` on every
change. A callback that raises is logged and skipped.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

logger = logging.getLogger(__name__)


class ProgressState(StrEnum):
    """State of a tracked operation."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    STOPPED = "stopped"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProgressUpdate:
    """A progress update event."""

    total: int
    succeeded: int
    failed: int
    state: ProgressState
    current_item: str | None = None
    stopped_reason: str | None = None
    started_at: datetime | None = None
    elapsed_seconds: float = 0.0

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed

    @property
    def remaining(self) -> int:
        """Items not yet processed (not attempted once the run is over)."""
        return max(0, self.total - self.processed)

    @property
    def progress_percent(self) -> float:
        """Completion percentage (0-100)."""
        if self.total == 0:
            return 100.0
        return (self.processed / self.total) * 100


ProgressCallback = Callable[[ProgressUpdate], None]


class ProgressTracker:
    """Observable progress of one bulk run.

    Usage:
        tracker = ProgressTracker(total=len(users), name="remove deprovisioned")
        tracker.on_progress(lambda u: print(f"{u.progress_percent:.0f}%"))

        tracker.start()
        for user in users:
            tracker.set_current(user.login)
            ...
            tracker.increment()
        tracker.complete()
    """

    def __init__(self, total: int = 0, name: str = "operation") -> None:
        self._total = total
        self._name = name
        self._succeeded = 0
        self._failed = 0
        self._state = ProgressState.PENDING
        self._current_item: str | None = None
        self._stopped_reason: str | None = None
        self._started_at: datetime | None = None
        self._start_time: float | None = None
        self._callbacks: list[ProgressCallback] = []

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------
    @property
    def total(self) -> int:
        return self._total

    @total.setter
    def total(self, value: int) -> None:
        """Set total items when it is not known upfront."""
        self._total = value
        self._notify()

    @property
    def succeeded(self) -> int:
        return self._succeeded

    @property
    def failed(self) -> int:
        return self._failed

    @property
    def state(self) -> ProgressState:
        return self._state

    @property
    def is_done(self) -> bool:
        """Whether the run has finished, for whatever reason."""
        return self._state in (
            ProgressState.COMPLETED,
            ProgressState.STOPPED,
            ProgressState.CANCELLED,
        )

    @property
    def elapsed_seconds(self) -> float:
        if self._start_time is None:
            return 0.0
        return time.monotonic() - self._start_time

    # -------------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------------
    def on_progress(self, callback: ProgressCallback) -> None:
        """Register a callback receiving a ProgressUpdate on every change."""
        self._callbacks.append(callback)

    def _notify(self) -> None:
        update = self.get_update()
        for callback in self._callbacks:
            try:
                callback(update)
            except Exception as e:
                logger.warning("Progress callback error: %s", e)

    # -------------------------------------------------------------------------
    # State Management
    # -------------------------------------------------------------------------
    def start(self) -> None:
        self._state = ProgressState.IN_PROGRESS
        self._started_at = datetime.now(UTC)
        self._start_time = time.monotonic()
        logger.info("Started %s (total=%d)", self._name, self._total)
        self._notify()

    def complete(self) -> None:
        self._state = ProgressState.COMPLETED
        self._current_item = None
        logger.info(
            "Completed %s: %d succeeded, %d failed in %.1fs",
            self._name,
            self._succeeded,
            self._failed,
            self.elapsed_seconds,
        )
        self._notify()

    def stop(self, reason: str) -> None:
        """The run ended early; remaining items will not be attempted."""
        self._state = ProgressState.STOPPED
        self._stopped_reason = reason
        self._current_item = None
        logger.warning(
            "Stopped %s at %d/%d: %s",
            self._name,
            self._succeeded + self._failed,
            self._total,
            reason,
        )
        self._notify()

    def cancel(self) -> None:
        self._state = ProgressState.CANCELLED
        self._stopped_reason = "cancelled"
        self._current_item = None
        logger.info(
            "Cancelled %s at %d/%d", self._name, self._succeeded + self._failed, self._total
        )
        self._notify()

    # -------------------------------------------------------------------------
    # Progress Updates
    # -------------------------------------------------------------------------
    def set_current(self, item: str) -> None:
        self._current_item = item
        self._notify()

    def increment(self, count: int = 1) -> None:
        """Count items that succeeded."""
        self._succeeded += count
        self._current_item = None
        logger.debug(
            "%s progress: %d/%d (%.1f%%)",
            self._name,
            self._succeeded + self._failed,
            self._total,
            self.get_update().progress_percent,
        )
        self._notify()

    def increment_failed(self, count: int = 1, error: str | None = None) -> None:
        """Count items that failed."""
        self._failed += count
        self._current_item = None
        if error:
            logger.warning("%s item failed: %s", self._name, error)
        self._notify()

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------
    def get_update(self) -> ProgressUpdate:
        """Current progress as an update object."""
        return ProgressUpdate(
            total=self._total,
            succeeded=self._succeeded,
            failed=self._failed,
            state=self._state,
            current_item=self._current_item,
            stopped_reason=self._stopped_reason,
            started_at=self._started_at,
            elapsed_seconds=self.elapsed_seconds,
        )
