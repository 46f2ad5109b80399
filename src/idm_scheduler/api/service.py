"""Typed command / event channel in front of the scheduler.

Callers send commands (or raw dicts with an ``action`` key) and receive
structured results; observers receive ``schedulerStateChanged`` events.
Failures never escape ``handle``: they come back as ``success=False``.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter, ValidationError

from idm_scheduler.logging import get_logger
from idm_scheduler.schemas import ApiResponse, SchemaBase

from .exceptions import SchedulerError
from .scheduling import (
    ApiScheduler,
    RequestPriority,
    SchedulerMetrics,
    SchedulerState,
)

logger = get_logger(__name__)

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------
class ScheduleApiRequest(SchemaBase):
    action: Literal["scheduleApiRequest"] = "scheduleApiRequest"
    endpoint: str = Field(min_length=1)
    method: HttpMethod = "GET"
    body: Any = None
    priority: Literal["high", "normal", "low"] = "normal"
    origin_tag: str = "default"
    cache_ttl: float | None = Field(default=None, gt=0)


class GetSchedulerState(SchemaBase):
    action: Literal["getSchedulerState"] = "getSchedulerState"


class GetSchedulerMetrics(SchemaBase):
    action: Literal["getSchedulerMetrics"] = "getSchedulerMetrics"


class PauseScheduler(SchemaBase):
    action: Literal["pauseScheduler"] = "pauseScheduler"


class ResumeScheduler(SchemaBase):
    action: Literal["resumeScheduler"] = "resumeScheduler"


class ClearSchedulerQueue(SchemaBase):
    action: Literal["clearSchedulerQueue"] = "clearSchedulerQueue"


SchedulerCommand = Annotated[
    ScheduleApiRequest
    | GetSchedulerState
    | GetSchedulerMetrics
    | PauseScheduler
    | ResumeScheduler
    | ClearSchedulerQueue,
    Field(discriminator="action"),
]

_command_adapter: TypeAdapter[SchedulerCommand] = TypeAdapter(SchedulerCommand)


def parse_command(raw: dict[str, Any]) -> SchedulerCommand:
    """Validate a raw message into a command.

    Raises:
        ValidationError: If the action is unknown or fields are invalid
    """
    return _command_adapter.validate_python(raw)


# -----------------------------------------------------------------------------
# Results & Events
# -----------------------------------------------------------------------------
class CommandResult(SchemaBase):
    success: bool = True
    error: str | None = None


class StateResult(CommandResult):
    state: SchedulerState


class MetricsResult(CommandResult):
    metrics: SchedulerMetrics


class ClearQueueResult(CommandResult):
    cleared: int = 0


class SchedulerStateChanged(SchemaBase):
    action: Literal["schedulerStateChanged"] = "schedulerStateChanged"
    state: SchedulerState


EventListener = Callable[[SchedulerStateChanged], Awaitable[None] | None]


class SchedulerService:
    """Dispatches commands to an ApiScheduler.

    Usage:
        service = SchedulerService(scheduler)
        service.subscribe(lambda event: print(event.state.status))

        result = await service.handle({
            "action": "scheduleApiRequest",
            "endpoint": "/api/v1/groups",
            "priority": "high",
            "originTag": "groups-view",
        })
    """

    def __init__(self, scheduler: ApiScheduler) -> None:
        self._scheduler = scheduler

    @property
    def scheduler(self) -> ApiScheduler:
        return self._scheduler

    async def handle(self, command: SchedulerCommand | dict[str, Any]) -> SchemaBase:
        """Execute one command.

        Returns:
            ApiResponse for scheduleApiRequest, a CommandResult subclass otherwise
        """
        if isinstance(command, dict):
            try:
                command = parse_command(command)
            except ValidationError as e:
                logger.warning("Rejected invalid command: {}", e.errors(include_url=False))
                return CommandResult(success=False, error=f"Invalid command: {e}")

        match command:
            case ScheduleApiRequest():
                return await self._schedule(command)
            case GetSchedulerState():
                return StateResult(state=self._scheduler.get_state())
            case GetSchedulerMetrics():
                return MetricsResult(metrics=self._scheduler.get_metrics())
            case PauseScheduler():
                self._scheduler.pause()
                return CommandResult()
            case ResumeScheduler():
                self._scheduler.resume()
                return CommandResult()
            case ClearSchedulerQueue():
                return ClearQueueResult(cleared=self._scheduler.clear_queue())

        return CommandResult(success=False, error=f"Unsupported command: {command!r}")

    async def _schedule(self, command: ScheduleApiRequest) -> ApiResponse:
        try:
            return await self._scheduler.submit(
                command.endpoint,
                command.method,
                command.body,
                priority=RequestPriority.parse(command.priority),
                origin=command.origin_tag,
                cache_ttl=command.cache_ttl,
            )
        except SchedulerError as e:
            logger.debug("{} {} failed: {}", command.method, command.endpoint, e)
            return ApiResponse(success=False, status=e.status, error=str(e))

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Receive a schedulerStateChanged event on every state change.

        Returns:
            Callable that removes the listener
        """

        def forward(state: SchedulerState) -> Awaitable[None] | None:
            result = listener(SchedulerStateChanged(state=state))
            return result if inspect.isawaitable(result) else None

        return self._scheduler.subscribe(forward)
