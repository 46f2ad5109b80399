"""Single-flight request scheduler.

Every caller in the process submits through one ``ApiScheduler``. A single
worker task dispatches one request at a time in priority-then-FIFO order,
consulting the cooldown controller before each dispatch and the pacer
after it.

The worker never busy-polls: it suspends on a timer (pacing, cooldown,
quota reset) or on a wake event set by enqueue, resume, clear and stop.
Requests are never retried by the scheduler.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from idm_scheduler.config import Settings, get_settings
from idm_scheduler.logging import bind_request, get_logger
from idm_scheduler.schemas import ApiResponse

from ..cache import ResultCache
from ..clock import SYSTEM_CLOCK, Clock
from ..exceptions import (
    InvalidStateError,
    SchedulerError,
    ThrottledError,
    TransientServerError,
)
from ..rate_limit.schemas import RateLimitInfo
from ..rate_limit.tracker import RateLimitTracker
from ..transport import Transport, classify_failure
from .controller import CooldownController, SchedulerStatus
from .metrics import (
    MetricsRecorder,
    SchedulerMetrics,
    SchedulerState,
    StateListener,
    StatePublisher,
)
from .pacer import RequestPacer
from .queue import QueuedRequest, RequestPriority, RequestQueue, RequestState

if TYPE_CHECKING:
    from loguru import Logger

logger = get_logger(__name__)


class ApiScheduler:
    """Rate-limit-aware scheduler for the remote API.

    Usage:
        scheduler = ApiScheduler(HttpTransport())
        await scheduler.start()

        response = await scheduler.submit(
            "/api/v1/groups/00g1/users",
            priority=RequestPriority.HIGH,
            origin="members-view",
        )

        scheduler.subscribe(lambda state: print(state.status))

        await scheduler.stop()
    """

    def __init__(
        self,
        transport: Transport | None,
        *,
        settings: Settings | None = None,
        tracker: RateLimitTracker | None = None,
        cache: ResultCache | None = None,
        clock: Clock = SYSTEM_CLOCK,
        request_timeout: float | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            transport: Performs the HTTP calls (None leaves the scheduler
                unable to accept requests)
            settings: Application settings (uses get_settings() if not provided)
            tracker: Optional shared quota tracker
            cache: Optional shared result cache
            clock: Time source for pacing and cooldown timers
            request_timeout: Seconds before an in-flight call is abandoned
        """
        settings = settings or get_settings()
        self._transport = transport
        self._clock = clock
        self._request_timeout = request_timeout or settings.api.request_timeout_seconds

        self._tracker = tracker or RateLimitTracker(settings.rate_limit, clock)
        self._pacer = RequestPacer(self._tracker, settings.pacing, clock)
        self._controller = CooldownController(self._tracker, settings.cooldown, clock)
        self._controller.on_transition(self._on_transition)
        self._cache = cache or ResultCache(settings.cache, clock)

        self._queue = RequestQueue(clock, on_abandoned=self._on_abandoned)
        self._metrics = MetricsRecorder()
        self._publisher = StatePublisher()

        self._active: dict[str, QueuedRequest] = {}
        self._wake = asyncio.Event()
        self._next_dispatch_at: datetime | None = None
        self._running = False
        self._closed = False
        self._worker_task: asyncio.Task[None] | None = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    async def start(self) -> None:
        """Start the dispatch worker."""
        if self._running:
            return
        if self._closed:
            raise InvalidStateError("Scheduler has been stopped")

        self._running = True
        self._worker_task = asyncio.create_task(self._worker_loop(), name="api-scheduler")
        logger.info("Request scheduler started")

    async def stop(self, wait: bool = False, timeout: float = 30.0) -> None:
        """Stop the scheduler.

        Queued requests are rejected with CancelledRequestError. With
        ``wait=True`` the queue is given up to ``timeout`` seconds to drain
        first.

        Args:
            wait: If True, wait for queued and in-flight requests
            timeout: Maximum seconds to wait
        """
        self._closed = True

        if wait and self._running and not self.is_idle:
            logger.info("Waiting for {} pending requests...", len(self._queue) + len(self._active))
            try:
                await asyncio.wait_for(self.wait_until_idle(), timeout)
            except TimeoutError:
                logger.warning("Timed out waiting for the queue to drain")

        self._running = False
        self._wake.set()

        if self._worker_task:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Scheduler worker had already failed: {!r}", e)
            self._worker_task = None

        cancelled = self._queue.clear("Scheduler stopped")
        self._metrics.record_cancelled(cancelled)
        self._publish()

        logger.info(
            "Request scheduler stopped (processed={}, failed={})",
            self._metrics.total_processed,
            self._metrics.error_count,
        )

    async def wait_until_idle(self, poll_interval: float = 0.01) -> None:
        """Return once nothing is queued or in flight."""
        while not self.is_idle:
            await asyncio.sleep(poll_interval)

    @property
    def is_running(self) -> bool:
        """Whether the worker is running."""
        return self._running

    # -------------------------------------------------------------------------
    # Request Submission
    # -------------------------------------------------------------------------
    def enqueue(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any | None = None,
        *,
        priority: RequestPriority | str = RequestPriority.NORMAL,
        origin: str = "default",
    ) -> QueuedRequest:
        """Queue a request without waiting for it.

        Returns:
            The queued request; await ``request.future`` for the response

        Raises:
            InvalidStateError: If there is no transport or the scheduler is stopped
        """
        if self._transport is None:
            raise InvalidStateError("No transport available to dispatch requests")
        if self._closed:
            raise InvalidStateError("Scheduler is stopped")

        request = self._queue.enqueue(
            endpoint,
            method,
            body,
            priority=RequestPriority.parse(priority),
            origin=origin,
        )
        self._metrics.record_submitted()
        self._wake.set()
        self._publish()
        return request

    async def submit(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any | None = None,
        *,
        priority: RequestPriority | str = RequestPriority.NORMAL,
        origin: str = "default",
        cache_ttl: float | None = None,
        timeout: float | None = None,
    ) -> ApiResponse:
        """Submit a request and wait for its response.

        Args:
            endpoint: Path (and query) relative to the API base URL
            method: HTTP method
            body: JSON body for non-GET requests
            priority: HIGH, NORMAL or LOW
            origin: Tag identifying the caller
            cache_ttl: For GET requests, serve from and store into the
                result cache with this TTL
            timeout: Give up waiting after this many seconds; the request
                is removed from the queue if not yet dispatched

        Returns:
            The successful response

        Raises:
            SchedulerError: The classified failure
        """
        method = method.upper()
        use_cache = cache_ttl is not None and method == "GET"

        if use_cache:
            cached = self._cache.get(endpoint)
            if cached is not None:
                self._metrics.record_cache_hit()
                logger.debug("Cache hit for {}", endpoint)
                return cached.model_copy(update={"from_cache": True})

        request = self.enqueue(endpoint, method, body, priority=priority, origin=origin)
        try:
            if timeout is not None:
                response = await asyncio.wait_for(request.future, timeout)
            else:
                response = await request.future
        except (asyncio.CancelledError, TimeoutError):
            self._abandon(request)
            raise

        if use_cache:
            self._cache.set(endpoint, response, ttl=cache_ttl)
        return response

    def _abandon(self, request: QueuedRequest) -> None:
        if self._queue.cancel(request.id, "Caller stopped waiting"):
            self._on_abandoned(request)

    def _on_abandoned(self, request: QueuedRequest) -> None:
        self._metrics.record_cancelled()
        self._publish()

    # -------------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------------
    def pause(self) -> None:
        """Stop dispatching. Queued requests keep their order."""
        self._controller.pause()
        self._wake.set()
        self._publish()

    def resume(self) -> None:
        """Resume dispatching after pause()."""
        self._controller.resume()
        self._wake.set()
        self._publish()

    def clear_queue(self) -> int:
        """Reject every queued request with CancelledRequestError.

        The in-flight request, if any, is not affected.

        Returns:
            Number of requests removed
        """
        removed = self._queue.clear()
        self._metrics.record_cancelled(removed)
        self._wake.set()
        self._publish()
        return removed

    def cancel_origin(self, origin: str) -> int:
        """Reject every queued request issued by ``origin``."""
        removed = self._queue.cancel_origin(origin)
        self._metrics.record_cancelled(removed)
        self._wake.set()
        self._publish()
        return removed

    # -------------------------------------------------------------------------
    # Observation
    # -------------------------------------------------------------------------
    def get_state(self) -> SchedulerState:
        """Snapshot of the scheduler."""
        return SchedulerState(
            status=self._controller.status,
            queue_length=len(self._queue),
            active_requests=len(self._active),
            rate_limit_info=self._tracker.most_restrictive(),
            cooldown_ends_at=self._controller.cooldown_ends_at,
            total_processed=self._metrics.total_processed,
            error_count=self._metrics.error_count,
            last_error=self._metrics.last_error,
        )

    def get_metrics(self) -> SchedulerMetrics:
        """Snapshot of the cumulative counters."""
        return self._metrics.snapshot()

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Receive a snapshot on every state change.

        Returns:
            Callable that removes the listener
        """
        return self._publisher.subscribe(listener)

    @property
    def status(self) -> SchedulerStatus:
        return self._controller.status

    @property
    def queue_size(self) -> int:
        """Number of requests waiting for dispatch."""
        return len(self._queue)

    @property
    def is_idle(self) -> bool:
        """True if nothing is queued or in flight."""
        return not self._queue and not self._active

    @property
    def tracker(self) -> RateLimitTracker:
        return self._tracker

    @property
    def cache(self) -> ResultCache:
        return self._cache

    def get_stats(self) -> dict[str, Any]:
        """Scheduler statistics for logging."""
        return {
            "status": self._controller.status.value,
            "queue_size": len(self._queue),
            "active_requests": len(self._active),
            "is_running": self._running,
            "consecutive_throttles": self._controller.consecutive_throttles,
            "pacer": self._pacer.get_stats(),
            "rate_limit": self._tracker.to_dict(),
        }

    def _publish(self) -> None:
        self._publisher.publish(self.get_state())

    def _on_transition(self, old: SchedulerStatus, new: SchedulerStatus) -> None:
        self._metrics.record_transition(old, new)
        self._publish()

    # -------------------------------------------------------------------------
    # Worker Loop
    # -------------------------------------------------------------------------
    async def _worker_loop(self) -> None:
        """Dispatch requests one at a time until stopped."""
        try:
            while self._running:
                if not await self._gate():
                    continue

                request = self._queue.dequeue_next()
                if request is None:
                    self._controller.on_drained()
                    self._publish()
                    await self._wait_for_wake()
                    continue

                await self._dispatch(request)
                delay = self._pacer.get_recommended_delay()
                self._next_dispatch_at = self._clock.now() + timedelta(seconds=delay)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduler worker crashed")
            self._running = False
            self._closed = True
            cancelled = self._queue.clear("Scheduler worker crashed")
            self._metrics.record_cancelled(cancelled)
            self._publish()
            raise

    async def _gate(self) -> bool:
        """Wait out any reason not to dispatch.

        Returns:
            True if dispatch may proceed now; False after a wait, so the
            caller re-evaluates
        """
        self._controller.expire_cooldown()

        wait = self._controller.dispatch_wait_seconds()
        if wait is None:
            await self._wait_for_wake()
            return False

        if self._next_dispatch_at is not None and self._queue:
            pacing = (self._next_dispatch_at - self._clock.now()).total_seconds()
            wait = max(wait, pacing)

        if wait > 0:
            await self._sleep_or_wake(wait)
            return False
        return True

    async def _wait_for_wake(self) -> None:
        self._wake.clear()
        await self._wake.wait()

    async def _sleep_or_wake(self, seconds: float) -> None:
        """Sleep on the clock, returning early if woken."""
        self._wake.clear()
        sleeper = asyncio.ensure_future(self._clock.sleep(seconds))
        waker = asyncio.ensure_future(self._wake.wait())
        try:
            await asyncio.wait({sleeper, waker}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            waker.cancel()
            await asyncio.gather(sleeper, waker, return_exceptions=True)

    async def _dispatch(self, request: QueuedRequest) -> None:
        """Send one request and settle its future."""
        assert self._transport is not None
        log = bind_request(request.id, request.endpoint)

        request.state = RequestState.IN_FLIGHT
        request.started_at = self._clock.now()
        self._active[request.id] = request
        self._controller.on_dispatch()
        self._pacer.on_request_start()
        self._publish()
        log.debug("Dispatching {} {}", request.method, request.endpoint)

        try:
            response, error = await self._send(request)
        except asyncio.CancelledError:
            request.cancel("Scheduler stopped")
            self._metrics.record_cancelled()
            self._active.pop(request.id, None)
            raise

        try:
            self._settle(request, response, error, log)
        except Exception as e:
            log.opt(exception=e).error("Failed to settle {} {}", request.method, request.endpoint)
            request.state = RequestState.FAILED
            if not request.future.done():
                failure = TransientServerError(f"Unreadable response: {e}")
                failure.__cause__ = e
                request.future.set_exception(failure)
        finally:
            self._active.pop(request.id, None)
            self._publish()

    def _settle(
        self,
        request: QueuedRequest,
        response: ApiResponse | None,
        error: SchedulerError | None,
        log: Logger,
    ) -> None:
        """Feed a finished request to the tracker and controller, then resolve it."""
        info: RateLimitInfo | None = None
        if response is not None:
            info = self._tracker.update_from_headers(response.headers, request.endpoint)

        if isinstance(error, ThrottledError):
            self._controller.on_rate_limited(error.retry_after)
        else:
            self._controller.on_response(info, success=error is None)

        now = self._clock.now()
        request.completed_at = now
        self._metrics.record_completed(
            success=error is None,
            wait_seconds=(request.started_at - request.enqueued_at).total_seconds(),
            execution_seconds=(now - request.started_at).total_seconds(),
            error=str(error) if error else None,
        )

        if error is None and response is not None:
            request.state = RequestState.COMPLETED
            if request.method != "GET":
                self._cache.invalidate_related(request.endpoint)
            if not request.future.done():
                request.future.set_result(response)
            log.debug("Request completed with status {}", response.status)
        else:
            assert error is not None
            request.state = RequestState.FAILED
            log.warning("{} {} failed: {}", request.method, request.endpoint, error)
            if not request.future.done():
                request.future.set_exception(error)

    async def _send(
        self, request: QueuedRequest
    ) -> tuple[ApiResponse | None, SchedulerError | None]:
        """Call the transport, converting every failure into a SchedulerError."""
        assert self._transport is not None
        try:
            response = await asyncio.wait_for(
                self._transport.send(request.endpoint, request.method, request.body),
                self._request_timeout,
            )
        except TimeoutError as e:
            error = TransientServerError(f"Request timed out after {self._request_timeout}s")
            error.__cause__ = e
            return None, error
        except SchedulerError as e:
            return None, e
        except Exception as e:
            logger.opt(exception=e).error("Transport raised for {}", request.endpoint)
            error = TransientServerError(f"Transport error: {e}")
            error.__cause__ = e
            return None, error

        if response.success:
            return response, None
        return response, classify_failure(response)

