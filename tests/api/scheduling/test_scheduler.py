"""Integration tests for ApiScheduler against a scripted transport.

A FakeClock makes pacing, cooldown and quota-reset waits elapse
instantly, so these tests observe the sequence of published states
rather than wall-clock timing.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any
from unittest.mock import patch

import pytest

from idm_scheduler.api.exceptions import (
    AuthorizationLostError,
    CancelledRequestError,
    ClientRequestError,
    InvalidStateError,
    ThrottledError,
    TransientServerError,
)
from idm_scheduler.api.scheduling import (
    ApiScheduler,
    RequestPriority,
    SchedulerState,
    SchedulerStatus,
)
from idm_scheduler.config import PacingConfig
from idm_scheduler.schemas import ApiResponse
from tests.fixtures.fakes import (
    T0,
    FakeClock,
    FakeTransport,
    error_response,
    fast_settings,
    make_scheduler,
    ok_response,
    quota_headers,
    settle,
    until,
)
from tests.fixtures.rate_limit_responses import (
    HEADERS_RESET_OUT_OF_RANGE,
    HEADERS_WARNING,
    RATE_LIMIT_ERROR_BODY,
)


def record_states(scheduler: ApiScheduler) -> list[SchedulerState]:
    states: list[SchedulerState] = []
    scheduler.subscribe(states.append)
    return states


def statuses(states: list[SchedulerState]) -> list[SchedulerStatus]:
    """Status sequence with consecutive duplicates collapsed."""
    result: list[SchedulerStatus] = []
    for state in states:
        if not result or result[-1] != state.status:
            result.append(state.status)
    return result


def stamped(clock: FakeClock, times: list[datetime], response: ApiResponse) -> Any:
    """Scripted response recording the simulated dispatch time."""

    def respond(endpoint: str, method: str, body: Any) -> ApiResponse:
        times.append(clock.now())
        return response

    return respond


class TestLifecycle:
    """Tests for start, stop and submission guards."""

    @pytest.mark.asyncio
    async def test_submit_returns_response(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        transport.push(ok_response({"id": "00u1"}))
        scheduler = make_scheduler(transport, clock)
        await scheduler.start()
        try:
            response = await scheduler.submit("/api/v1/users/me", priority="high")
        finally:
            await scheduler.stop()

        assert response.success is True
        assert response.data == {"id": "00u1"}
        assert transport.calls == [("/api/v1/users/me", "GET", None)]

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, clock: FakeClock) -> None:
        scheduler = make_scheduler(clock=clock)
        await scheduler.start()
        await scheduler.start()

        assert scheduler.is_running is True
        await scheduler.stop()
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_no_transport_rejects_requests(self) -> None:
        scheduler = ApiScheduler(None, settings=fast_settings(), clock=FakeClock())

        with pytest.raises(InvalidStateError, match="No transport"):
            scheduler.enqueue("/api/v1/users")

    @pytest.mark.asyncio
    async def test_stopped_scheduler_rejects_requests(self, clock: FakeClock) -> None:
        scheduler = make_scheduler(clock=clock)
        await scheduler.start()
        await scheduler.stop()

        with pytest.raises(InvalidStateError, match="stopped"):
            await scheduler.submit("/api/v1/users")
        with pytest.raises(InvalidStateError):
            await scheduler.start()

    @pytest.mark.asyncio
    async def test_stop_rejects_queued_requests(self, clock: FakeClock) -> None:
        scheduler = make_scheduler(clock=clock)
        scheduler.pause()
        request = scheduler.enqueue("/api/v1/users")
        await scheduler.start()

        await scheduler.stop()

        with pytest.raises(CancelledRequestError, match="Scheduler stopped"):
            await request.future
        assert scheduler.get_state().queue_length == 0
        assert scheduler.get_metrics().cancelled_requests == 1

    @pytest.mark.asyncio
    async def test_stop_with_wait_drains_queue(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        scheduler = make_scheduler(transport, clock)
        first = scheduler.enqueue("/a")
        second = scheduler.enqueue("/b")
        await scheduler.start()

        await scheduler.stop(wait=True, timeout=5.0)

        assert first.future.result().success is True
        assert second.future.result().success is True
        assert transport.endpoints == ["/a", "/b"]


class TestOrdering:
    """Tests for dispatch order."""

    @pytest.mark.asyncio
    async def test_high_priority_jumps_queued_normals(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        """Three NORMAL then one HIGH: the HIGH runs right after the in-flight one."""
        transport.gate = asyncio.Event()
        scheduler = make_scheduler(transport, clock)
        await scheduler.start()
        try:
            requests = [scheduler.enqueue("/normal-1")]
            await until(lambda: len(transport.calls) == 1)
            requests.append(scheduler.enqueue("/normal-2"))
            requests.append(scheduler.enqueue("/normal-3"))
            requests.append(scheduler.enqueue("/high", priority=RequestPriority.HIGH))

            transport.gate.set()
            await asyncio.gather(*(r.future for r in requests))
        finally:
            await scheduler.stop()

        assert transport.endpoints == ["/normal-1", "/high", "/normal-2", "/normal-3"]

    @pytest.mark.asyncio
    async def test_single_flight(self, transport: FakeTransport, clock: FakeClock) -> None:
        """Never more than one request in flight."""
        transport.gate = asyncio.Event()
        scheduler = make_scheduler(transport, clock)
        states = record_states(scheduler)
        await scheduler.start()
        try:
            requests = [scheduler.enqueue(f"/item/{i}") for i in range(3)]
            await until(lambda: len(transport.calls) == 1)
            await settle()
            assert len(transport.calls) == 1

            transport.gate.set()
            await asyncio.gather(*(r.future for r in requests))
        finally:
            await scheduler.stop()

        assert max(s.active_requests for s in states) == 1


class TestPauseResume:
    """Tests for pause and resume."""

    @pytest.mark.asyncio
    async def test_pause_holds_queue_in_order(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        scheduler = make_scheduler(transport, clock)
        scheduler.pause()
        requests = [
            scheduler.enqueue("/a"),
            scheduler.enqueue("/b", priority="high"),
            scheduler.enqueue("/c"),
        ]
        await scheduler.start()
        try:
            await settle()
            assert transport.calls == []
            assert scheduler.status == SchedulerStatus.PAUSED
            assert scheduler.queue_size == 3

            scheduler.resume()
            await asyncio.gather(*(r.future for r in requests))
        finally:
            await scheduler.stop()

        assert transport.endpoints == ["/b", "/a", "/c"]

    @pytest.mark.asyncio
    async def test_pause_lets_in_flight_request_finish(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        """Pausing holds the queue; the dispatched request still completes."""
        transport.gate = asyncio.Event()
        scheduler = make_scheduler(transport, clock)
        await scheduler.start()
        try:
            first = scheduler.enqueue("/a")
            second = scheduler.enqueue("/b")
            await until(lambda: len(transport.calls) == 1)

            scheduler.pause()
            transport.gate.set()
            await first.future
            await settle()
            assert transport.endpoints == ["/a"]
            assert scheduler.status == SchedulerStatus.PAUSED

            scheduler.resume()
            await second.future
        finally:
            await scheduler.stop()

        assert transport.endpoints == ["/a", "/b"]


class TestClearQueue:
    """Tests for clear_queue and cancel_origin."""

    @pytest.mark.asyncio
    async def test_clear_leaves_in_flight_request(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        transport.gate = asyncio.Event()
        scheduler = make_scheduler(transport, clock)
        await scheduler.start()
        try:
            in_flight = scheduler.enqueue("/a")
            await until(lambda: len(transport.calls) == 1)
            queued = [scheduler.enqueue("/b"), scheduler.enqueue("/c")]
            assert scheduler.get_state().queue_length == 2
            assert scheduler.get_state().active_requests == 1

            removed = scheduler.clear_queue()

            state = scheduler.get_state()
            assert removed == 2
            assert state.queue_length == 0
            assert state.active_requests == 1
            for request in queued:
                with pytest.raises(CancelledRequestError):
                    await request.future

            transport.gate.set()
            response = await in_flight.future
        finally:
            await scheduler.stop()

        assert response.success is True
        assert transport.endpoints == ["/a"]
        assert scheduler.get_metrics().cancelled_requests == 2

    @pytest.mark.asyncio
    async def test_cancel_origin(self, transport: FakeTransport, clock: FakeClock) -> None:
        scheduler = make_scheduler(transport, clock)
        scheduler.pause()
        bulk = scheduler.enqueue("/a", origin="bulk")
        view = scheduler.enqueue("/b", origin="view")

        assert scheduler.cancel_origin("bulk") == 1
        await scheduler.start()
        try:
            scheduler.resume()
            await view.future
        finally:
            await scheduler.stop()

        with pytest.raises(CancelledRequestError):
            await bulk.future
        assert transport.endpoints == ["/b"]

    @pytest.mark.asyncio
    async def test_queue_length_tracks_queue(self, clock: FakeClock) -> None:
        scheduler = make_scheduler(clock=clock)
        scheduler.pause()
        scheduler.enqueue("/a")
        scheduler.enqueue("/b")

        assert scheduler.get_state().queue_length == scheduler.queue_size == 2

        scheduler.clear_queue()
        assert scheduler.get_state().queue_length == 0
        assert scheduler.is_idle is True

    @pytest.mark.asyncio
    async def test_cancelled_handle_updates_queue_length(self, clock: FakeClock) -> None:
        scheduler = make_scheduler(clock=clock)
        states = record_states(scheduler)
        scheduler.pause()
        abandoned = scheduler.enqueue("/a")
        scheduler.enqueue("/b")

        abandoned.future.cancel()
        await settle()

        assert scheduler.get_state().queue_length == 1
        assert states[-1].queue_length == 1
        assert scheduler.get_metrics().cancelled_requests == 1


class TestCooldown:
    """Tests for 429 handling."""

    @pytest.mark.asyncio
    async def test_rate_limit_enters_cooldown_then_idle(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        transport.push(error_response(429, headers={"retry-after": "30"}))
        scheduler = make_scheduler(transport, clock)
        states = record_states(scheduler)
        await scheduler.start()
        try:
            with pytest.raises(ThrottledError) as exc_info:
                await scheduler.submit("/api/v1/users")
            await until(lambda: scheduler.status == SchedulerStatus.IDLE)
        finally:
            await scheduler.stop()

        assert exc_info.value.retry_after == 30.0
        cooldown = [s for s in states if s.status == SchedulerStatus.COOLDOWN]
        assert cooldown
        assert cooldown[0].cooldown_ends_at == T0 + timedelta(seconds=30)
        assert statuses(states)[-2:] == [SchedulerStatus.COOLDOWN, SchedulerStatus.IDLE]
        assert 30.0 in clock.sleeps
        assert scheduler.get_metrics().cooldown_events == 1

    @pytest.mark.asyncio
    async def test_queued_request_waits_for_cooldown(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        times: list[datetime] = []
        transport.push(
            stamped(clock, times, error_response(429, headers={"retry-after": "30"})),
            stamped(clock, times, ok_response()),
        )
        scheduler = make_scheduler(transport, clock)
        first = scheduler.enqueue("/a")
        second = scheduler.enqueue("/b")
        await scheduler.start()
        try:
            with pytest.raises(ThrottledError):
                await first.future
            await second.future
        finally:
            await scheduler.stop()

        assert times[1] - times[0] >= timedelta(seconds=30)

    @pytest.mark.asyncio
    async def test_rate_limit_error_code_in_body(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        """The rate-limit error code in a body counts as a 429 whatever the status."""
        transport.push(error_response(403, data=RATE_LIMIT_ERROR_BODY))
        scheduler = make_scheduler(transport, clock)
        await scheduler.start()
        try:
            with pytest.raises(ThrottledError) as exc_info:
                await scheduler.submit("/api/v1/users")
        finally:
            await scheduler.stop()

        assert exc_info.value.retry_after is None

    @pytest.mark.asyncio
    async def test_throttled_then_cooldown(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        """Low quota throttles; a 429 during throttling enters cooldown."""
        times: list[datetime] = []
        transport.push(
            ok_response(headers=HEADERS_WARNING),
            stamped(clock, times, error_response(429, headers={"retry-after": "30"})),
            stamped(clock, times, ok_response()),
        )
        scheduler = make_scheduler(transport, clock)
        states = record_states(scheduler)
        requests = [scheduler.enqueue(f"/api/v1/users/{i}") for i in range(3)]
        await scheduler.start()
        try:
            await requests[0].future
            with pytest.raises(ThrottledError):
                await requests[1].future
            await requests[2].future
        finally:
            await scheduler.stop()

        seen = statuses(states)
        assert SchedulerStatus.THROTTLED in seen
        assert seen.index(SchedulerStatus.COOLDOWN) > seen.index(SchedulerStatus.THROTTLED)
        cooldown = next(s for s in states if s.status == SchedulerStatus.COOLDOWN)
        assert cooldown.cooldown_ends_at == times[0] + timedelta(seconds=30)
        assert times[1] >= cooldown.cooldown_ends_at
        assert scheduler.get_metrics().throttle_events == 1

    @pytest.mark.asyncio
    async def test_exhausted_quota_holds_dispatch_until_reset(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        """remaining=0 blocks the next dispatch until the reset; a 429 then cools down."""
        times: list[datetime] = []
        transport.push(
            ok_response(headers=quota_headers(600, 0, reset_in=60)),
            stamped(clock, times, error_response(429, headers={"retry-after": "30"})),
            stamped(clock, times, ok_response()),
        )
        scheduler = make_scheduler(
            transport,
            clock,
            pacing=PacingConfig(
                min_request_interval_ms=0,
                throttled_min_interval_ms=0,
                max_request_interval_ms=1000,
            ),
        )
        states = record_states(scheduler)
        requests = [scheduler.enqueue(f"/api/v1/users/{i}") for i in range(3)]
        await scheduler.start()
        try:
            await requests[0].future
            with pytest.raises(ThrottledError):
                await requests[1].future
            await requests[2].future
        finally:
            await scheduler.stop()

        seen = statuses(states)
        assert seen.index(SchedulerStatus.THROTTLED) < seen.index(SchedulerStatus.COOLDOWN)
        assert times[0] == T0 + timedelta(seconds=60)
        assert 60.0 in clock.sleeps
        cooldown = next(s for s in states if s.status == SchedulerStatus.COOLDOWN)
        assert cooldown.cooldown_ends_at == times[0] + timedelta(seconds=30)
        assert times[1] >= cooldown.cooldown_ends_at

    @pytest.mark.asyncio
    async def test_huge_retry_after_is_capped(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        transport.push(
            error_response(429, headers={"retry-after": "1e300"}),
            ok_response({"id": "00u2"}),
        )
        scheduler = make_scheduler(transport, clock)
        states = record_states(scheduler)
        first = scheduler.enqueue("/a")
        second = scheduler.enqueue("/b")
        await scheduler.start()
        try:
            with pytest.raises(ThrottledError):
                await first.future
            response = await second.future
        finally:
            await scheduler.stop()

        assert response.data == {"id": "00u2"}
        cooldown = next(s for s in states if s.status == SchedulerStatus.COOLDOWN)
        assert cooldown.cooldown_ends_at == T0 + timedelta(seconds=600)

    @pytest.mark.asyncio
    async def test_throttled_pacing_spreads_requests(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        """Below the warning threshold requests are spaced over the window."""
        times: list[datetime] = []
        transport.push(
            ok_response(headers=HEADERS_WARNING),
            stamped(clock, times, ok_response()),
        )
        scheduler = make_scheduler(transport, clock)
        requests = [scheduler.enqueue("/a"), scheduler.enqueue("/b")]
        await scheduler.start()
        try:
            await asyncio.gather(*(r.future for r in requests))
        finally:
            await scheduler.stop()

        # 60s until reset / 90 remaining * 1.5
        assert times[0] - T0 == timedelta(seconds=1)


class TestErrorMapping:
    """Tests for failure classification."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("response", "error_type", "status"),
        [
            (error_response(403, "Forbidden"), AuthorizationLostError, 403),
            (error_response(404, "Not found"), ClientRequestError, 404),
            (error_response(400, "Bad request"), ClientRequestError, 400),
            (error_response(500, "Server error"), TransientServerError, 500),
            (error_response(503), TransientServerError, 503),
            (error_response(None), TransientServerError, None),
        ],
    )
    async def test_failed_response(
        self,
        clock: FakeClock,
        response: ApiResponse,
        error_type: type[Exception],
        status: int | None,
    ) -> None:
        scheduler = make_scheduler(FakeTransport([response]), clock)
        await scheduler.start()
        try:
            with pytest.raises(error_type) as exc_info:
                await scheduler.submit("/api/v1/users")
        finally:
            await scheduler.stop()

        assert getattr(exc_info.value, "status") == status
        assert scheduler.status != SchedulerStatus.COOLDOWN

    @pytest.mark.asyncio
    async def test_transport_exception(self, clock: FakeClock) -> None:
        scheduler = make_scheduler(FakeTransport([ConnectionError("reset by peer")]), clock)
        await scheduler.start()
        try:
            with pytest.raises(TransientServerError, match="reset by peer") as exc_info:
                await scheduler.submit("/api/v1/users")
        finally:
            await scheduler.stop()

        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_request_timeout(self, clock: FakeClock) -> None:
        transport = FakeTransport()
        transport.gate = asyncio.Event()
        scheduler = ApiScheduler(
            transport, settings=fast_settings(), clock=clock, request_timeout=0.01
        )
        await scheduler.start()
        try:
            with pytest.raises(TransientServerError, match="timed out"):
                await scheduler.submit("/api/v1/users")
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_unrepresentable_reset_header_is_ignored(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        transport.push(ok_response({"id": "00u1"}, headers=HEADERS_RESET_OUT_OF_RANGE))
        scheduler = make_scheduler(transport, clock)
        await scheduler.start()
        try:
            response = await scheduler.submit("/a")
            follow_up = await scheduler.submit("/b")
        finally:
            await scheduler.stop()

        assert response.data == {"id": "00u1"}
        assert follow_up.success is True
        assert scheduler.get_state().rate_limit_info is None

    @pytest.mark.asyncio
    async def test_settling_failure_rejects_and_keeps_worker_alive(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        """An error while reading a response rejects that request only."""
        scheduler = make_scheduler(transport, clock)
        await scheduler.start()
        try:
            with patch.object(
                scheduler.tracker,
                "update_from_headers",
                side_effect=[OverflowError("timestamp out of range"), None],
            ):
                with pytest.raises(TransientServerError, match="timestamp out of range") as exc:
                    await scheduler.submit("/a")
                response = await scheduler.submit("/b")
            assert scheduler.is_running
        finally:
            await scheduler.stop()

        assert isinstance(exc.value.__cause__, OverflowError)
        assert response.success is True
        assert scheduler.get_state().active_requests == 0

    @pytest.mark.asyncio
    async def test_no_implicit_retry(self, clock: FakeClock) -> None:
        transport = FakeTransport([error_response(500)])
        scheduler = make_scheduler(transport, clock)
        await scheduler.start()
        try:
            with pytest.raises(TransientServerError):
                await scheduler.submit("/api/v1/users")
            await settle()
        finally:
            await scheduler.stop()

        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_caller_timeout_abandons_queued_request(self, clock: FakeClock) -> None:
        transport = FakeTransport()
        scheduler = make_scheduler(transport, clock)
        scheduler.pause()
        await scheduler.start()
        try:
            with pytest.raises(TimeoutError):
                await scheduler.submit("/api/v1/users", timeout=0.01)

            assert scheduler.queue_size == 0
            scheduler.resume()
            await settle()
        finally:
            await scheduler.stop()

        assert transport.calls == []
        assert scheduler.get_metrics().cancelled_requests == 1


class TestCache:
    """Tests for the GET result cache."""

    @pytest.mark.asyncio
    async def test_cache_hit_bypasses_queue(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        transport.push(ok_response({"id": "00g1"}))
        scheduler = make_scheduler(transport, clock)
        await scheduler.start()
        try:
            first = await scheduler.submit("/api/v1/groups/00g1", cache_ttl=60)
            second = await scheduler.submit("/api/v1/groups/00g1", cache_ttl=60)
        finally:
            await scheduler.stop()

        assert len(transport.calls) == 1
        assert first.from_cache is False
        assert second.from_cache is True
        assert second.data == {"id": "00g1"}
        assert scheduler.get_metrics().cache_hits == 1

    @pytest.mark.asyncio
    async def test_cache_expires(self, transport: FakeTransport, clock: FakeClock) -> None:
        scheduler = make_scheduler(transport, clock)
        await scheduler.start()
        try:
            await scheduler.submit("/api/v1/groups/00g1", cache_ttl=60)
            clock.advance(61)
            await scheduler.submit("/api/v1/groups/00g1", cache_ttl=60)
        finally:
            await scheduler.stop()

        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_mutation_invalidates_collection(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        scheduler = make_scheduler(transport, clock)
        await scheduler.start()
        try:
            await scheduler.submit("/api/v1/groups/00g1/users?limit=200", cache_ttl=60)
            await scheduler.submit("/api/v1/groups/00g1", cache_ttl=60)
            await scheduler.submit("/api/v1/groups/00g1/users/00u1", "DELETE")
            await scheduler.submit("/api/v1/groups/00g1/users?limit=200", cache_ttl=60)
            await scheduler.submit("/api/v1/groups/00g1", cache_ttl=60)
        finally:
            await scheduler.stop()

        assert transport.endpoints == [
            "/api/v1/groups/00g1/users?limit=200",
            "/api/v1/groups/00g1",
            "/api/v1/groups/00g1/users/00u1",
            "/api/v1/groups/00g1/users?limit=200",
        ]

    @pytest.mark.asyncio
    async def test_without_ttl_never_cached(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        scheduler = make_scheduler(transport, clock)
        await scheduler.start()
        try:
            await scheduler.submit("/api/v1/users")
            await scheduler.submit("/api/v1/users")
        finally:
            await scheduler.stop()

        assert len(transport.calls) == 2


class TestObservation:
    """Tests for state snapshots, events and metrics."""

    @pytest.mark.asyncio
    async def test_events_follow_a_request(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        scheduler = make_scheduler(transport, clock)
        states = record_states(scheduler)
        await scheduler.start()
        try:
            await scheduler.submit("/api/v1/users")
            await until(lambda: scheduler.status == SchedulerStatus.IDLE)
        finally:
            await scheduler.stop()

        assert SchedulerStatus.PROCESSING in statuses(states)
        assert states[-1].status == SchedulerStatus.IDLE
        assert states[-1].total_processed == 1
        assert states[-1].queue_length == 0
        assert states[-1].active_requests == 0

    @pytest.mark.asyncio
    async def test_rate_limit_info_in_state(
        self, transport: FakeTransport, clock: FakeClock
    ) -> None:
        transport.push(ok_response(headers=HEADERS_WARNING))
        scheduler = make_scheduler(transport, clock)
        await scheduler.start()
        try:
            await scheduler.submit("/api/v1/users?limit=200")
        finally:
            await scheduler.stop()

        info = scheduler.get_state().rate_limit_info
        assert info is not None
        assert info.endpoint == "/api/v1/users"
        assert info.remaining == 90

    @pytest.mark.asyncio
    async def test_metrics(self, transport: FakeTransport, clock: FakeClock) -> None:
        transport.push(ok_response(), error_response(404, "Not found"))
        scheduler = make_scheduler(transport, clock)
        await scheduler.start()
        try:
            await scheduler.submit("/a")
            with pytest.raises(ClientRequestError):
                await scheduler.submit("/b")
        finally:
            await scheduler.stop()

        metrics = scheduler.get_metrics()
        state = scheduler.get_state()
        assert metrics.total_requests == 2
        assert metrics.total_processed == 2
        assert metrics.successful_requests == 1
        assert metrics.failed_requests == 1
        assert metrics.success_rate == 50.0
        assert state.error_count == 1
        assert state.last_error == "Not found"

    @pytest.mark.asyncio
    async def test_unsubscribe(self, transport: FakeTransport, clock: FakeClock) -> None:
        scheduler = make_scheduler(transport, clock)
        states: list[SchedulerState] = []
        unsubscribe = scheduler.subscribe(states.append)
        unsubscribe()
        await scheduler.start()
        try:
            await scheduler.submit("/a")
        finally:
            await scheduler.stop()

        assert states == []

    @pytest.mark.asyncio
    async def test_get_stats(self, transport: FakeTransport, clock: FakeClock) -> None:
        scheduler = make_scheduler(transport, clock)
        stats = scheduler.get_stats()

        assert stats["status"] == "idle"
        assert stats["queue_size"] == 0
        assert stats["is_running"] is False
        assert "pacer" in stats
        assert "rate_limit" in stats
