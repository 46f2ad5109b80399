"""Request scheduling for the remote API.

Components:
- RequestQueue: priority-then-FIFO holding area with bulk cancellation
- CooldownController: status state machine gating dispatch
- RequestPacer: adaptive delay between dispatches
- ApiScheduler: single-flight dispatch worker
- StatePublisher: snapshot broadcast to observers
"""

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
from .scheduler import ApiScheduler

__all__ = [
    # Scheduling
    "ApiScheduler",
    "QueuedRequest",
    "RequestPriority",
    "RequestQueue",
    "RequestState",
    # Gate & pacing
    "CooldownController",
    "RequestPacer",
    "SchedulerStatus",
    # Observation
    "MetricsRecorder",
    "SchedulerMetrics",
    "SchedulerState",
    "StateListener",
    "StatePublisher",
]
