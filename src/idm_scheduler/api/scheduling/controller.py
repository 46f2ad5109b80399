"""Cooldown controller: the scheduler's dispatch gate.

States and transitions:

    IDLE -> PROCESSING        a request is dispatched
    PROCESSING -> IDLE        queue drained, nothing in flight
    PROCESSING -> THROTTLED   a response shows quota below the warning threshold
    THROTTLED -> PROCESSING   a later response shows healthy quota
    THROTTLED -> IDLE         queue drained after the quota window reset
    * -> COOLDOWN             explicit rate-limit response (429)
    COOLDOWN -> IDLE          the cooldown deadline passes
    * -> PAUSED               explicit pause
    PAUSED -> IDLE            explicit resume

There is no terminal state. Only the scheduler loop drives this object.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from enum import StrEnum

from idm_scheduler.config import CooldownConfig, get_settings

from ..clock import SYSTEM_CLOCK, Clock
from ..rate_limit.schemas import RateLimitInfo
from ..rate_limit.tracker import RateLimitTracker

logger = logging.getLogger(__name__)


class SchedulerStatus(StrEnum):
    """Scheduler status. Exactly one value at any instant."""

    IDLE = "idle"
    PROCESSING = "processing"
    THROTTLED = "throttled"
    COOLDOWN = "cooldown"
    PAUSED = "paused"


TransitionCallback = Callable[[SchedulerStatus, SchedulerStatus], None]


class CooldownController:
    """State machine deciding whether the scheduler may dispatch.

    Usage:
        controller = CooldownController(tracker)
        controller.on_transition(lambda old, new: print(old, "->", new))

        wait = controller.dispatch_wait_seconds()
        if wait == 0:
            controller.on_dispatch()
            ...
            controller.on_response(info, success=True)
    """

    def __init__(
        self,
        tracker: RateLimitTracker,
        config: CooldownConfig | None = None,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        """Initialize the controller in IDLE.

        Args:
            tracker: Quota tracker consulted for throttling decisions
            config: Optional cooldown configuration (uses settings if not provided)
            clock: Time source for cooldown deadlines
        """
        self._tracker = tracker
        self._config = config or get_settings().cooldown
        self._clock = clock

        self._status = SchedulerStatus.IDLE
        self._cooldown_ends_at: datetime | None = None
        self._paused_cooldown_ends_at: datetime | None = None
        self._consecutive_throttles = 0
        self._callbacks: list[TransitionCallback] = []

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------
    @property
    def status(self) -> SchedulerStatus:
        """Current status."""
        return self._status

    @property
    def cooldown_ends_at(self) -> datetime | None:
        """Cooldown deadline; set only while status is COOLDOWN."""
        return self._cooldown_ends_at

    @property
    def consecutive_throttles(self) -> int:
        """Number of 429 responses since the last successful one."""
        return self._consecutive_throttles

    def cooldown_remaining(self) -> float:
        """Seconds left in the current cooldown (0 if not cooling down)."""
        if self._cooldown_ends_at is None:
            return 0.0
        return max(0.0, (self._cooldown_ends_at - self._clock.now()).total_seconds())

    def dispatch_wait_seconds(self) -> float | None:
        """How long dispatch must wait before the next request.

        Returns:
            None while paused (wait for an explicit resume),
            seconds until the cooldown deadline or quota reset,
            or 0.0 if dispatch may proceed now
        """
        if self._status is SchedulerStatus.PAUSED:
            return None
        if self._status is SchedulerStatus.COOLDOWN:
            return self.cooldown_remaining()
        if self._status is SchedulerStatus.THROTTLED and self._tracker.is_blocked():
            return self._tracker.seconds_until_reset()
        return 0.0

    def can_dispatch(self) -> bool:
        """Whether a request may be dispatched right now."""
        return self.dispatch_wait_seconds() == 0.0

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------
    def on_transition(self, callback: TransitionCallback) -> None:
        """Register a callback fired with (old, new) on every status change."""
        self._callbacks.append(callback)

    def on_dispatch(self) -> None:
        """A request is being handed to the transport."""
        if self._status is SchedulerStatus.IDLE:
            self._transition(SchedulerStatus.PROCESSING, "request dispatched")

    def on_response(self, info: RateLimitInfo | None, *, success: bool) -> None:
        """Re-evaluate after any response that was not a rate-limit rejection.

        Args:
            info: Quota reading parsed from the response (None if absent)
            success: Whether the response was a 2xx
        """
        if success:
            self._consecutive_throttles = 0

        if info is None or self._status in (SchedulerStatus.PAUSED, SchedulerStatus.COOLDOWN):
            return

        below_warning = self._tracker.is_below_warning(info)
        if below_warning and self._status in (SchedulerStatus.IDLE, SchedulerStatus.PROCESSING):
            self._transition(
                SchedulerStatus.THROTTLED,
                f"quota low ({info.remaining}/{info.limit} on {info.endpoint})",
            )
        elif not below_warning and self._status is SchedulerStatus.THROTTLED:
            self._transition(SchedulerStatus.PROCESSING, "quota healthy again")

    def on_rate_limited(self, retry_after: float | None) -> datetime:
        """Enter cooldown after an explicit rate-limit response.

        Args:
            retry_after: Seconds from the retry-after header, if present

        Returns:
            The cooldown deadline
        """
        self._consecutive_throttles += 1
        if retry_after is not None:
            # A retry-after longer than both the backoff cap and the quota reset is not honoured.
            ceiling = max(self._config.max_backoff_seconds, self._tracker.seconds_until_reset())
            seconds = min(retry_after, ceiling)
        else:
            seconds = self._computed_cooldown()
        ends_at = self._clock.now() + timedelta(seconds=seconds)

        if self._status is SchedulerStatus.PAUSED:
            self._paused_cooldown_ends_at = ends_at
            logger.warning("Rate limited while paused; cooldown of %.1fs deferred", seconds)
            return ends_at

        logger.warning(
            "Entering cooldown for %.1fs (retry_after=%s, consecutive=%d)",
            seconds,
            retry_after,
            self._consecutive_throttles,
        )
        self._cooldown_ends_at = ends_at
        self._transition(SchedulerStatus.COOLDOWN, f"rate limited, cooldown {seconds:.1f}s")
        return ends_at

    def _computed_cooldown(self) -> float:
        """Exponential backoff, never shorter than the quota reset."""
        backoff = self._config.base_backoff_seconds * 2 ** (self._consecutive_throttles - 1)
        backoff = min(backoff, self._config.max_backoff_seconds)
        return max(backoff, self._tracker.seconds_until_reset())

    def expire_cooldown(self) -> bool:
        """Leave COOLDOWN if its deadline has passed.

        Returns:
            True if the controller transitioned to IDLE
        """
        if self._status is not SchedulerStatus.COOLDOWN or self.cooldown_remaining() > 0:
            return False
        self._cooldown_ends_at = None
        self._transition(SchedulerStatus.IDLE, "cooldown ended")
        return True

    def on_drained(self) -> None:
        """The queue is empty and nothing is in flight."""
        if self._status is SchedulerStatus.PROCESSING:
            self._transition(SchedulerStatus.IDLE, "queue drained")
        elif self._status is SchedulerStatus.THROTTLED and not self._tracker.is_below_warning():
            self._transition(SchedulerStatus.IDLE, "quota window reset")

    def pause(self) -> None:
        """Halt dispatch until resume(). A running cooldown is remembered."""
        if self._status is SchedulerStatus.PAUSED:
            return
        if self._status is SchedulerStatus.COOLDOWN:
            self._paused_cooldown_ends_at = self._cooldown_ends_at
        self._cooldown_ends_at = None
        self._transition(SchedulerStatus.PAUSED, "paused")

    def resume(self) -> None:
        """Return to IDLE, re-entering a remembered cooldown that is still running."""
        if self._status is not SchedulerStatus.PAUSED:
            return
        deferred, self._paused_cooldown_ends_at = self._paused_cooldown_ends_at, None
        self._transition(SchedulerStatus.IDLE, "resumed")

        if deferred is not None and deferred > self._clock.now():
            self._cooldown_ends_at = deferred
            self._transition(SchedulerStatus.COOLDOWN, "cooldown still running after resume")

    def _transition(self, new: SchedulerStatus, reason: str) -> None:
        old = self._status
        if old is new:
            return
        self._status = new
        logger.info("Status changed: %s -> %s (%s)", old.value, new.value, reason)
        for callback in self._callbacks:
            callback(old, new)
