"""Sequential bulk mutations through the scheduler.

Each item is submitted on its own, at low priority, with a fixed delay
between submissions on top of the scheduler's own pacing. Losing
authorization (403) stops the run at once: continuing would only
produce more 403s.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from idm_scheduler.config import BulkConfig, get_settings
from idm_scheduler.logging import bind_operation

from ..clock import SYSTEM_CLOCK, Clock
from ..exceptions import AuthorizationLostError, CancelledRequestError, SchedulerError
from ..scheduling import ApiScheduler, RequestPriority
from .progress import ProgressTracker
from .undo import SubItem, SubItemStatus, UndoLog

if TYPE_CHECKING:
    from loguru import Logger


@dataclass
class MutationRequest:
    """One mutation to apply."""

    item_id: str
    endpoint: str
    method: str = "DELETE"
    body: Any = None
    label: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.label or self.item_id


@dataclass
class BulkResult:
    """Outcome of a bulk run."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    not_attempted: int = 0
    stopped_reason: str | None = None
    errors: list[tuple[str, str]] = field(default_factory=list)
    action_id: str | None = None

    @property
    def all_succeeded(self) -> bool:
        return self.failed == 0 and self.not_attempted == 0

    @property
    def was_stopped(self) -> bool:
        return self.stopped_reason is not None


InverseFactory = Callable[[SubItem], MutationRequest]


class BulkMutationExecutor:
    """Applies mutations one at a time and records them for undo.

    Usage:
        executor = BulkMutationExecutor(scheduler)
        result = await executor.execute(
            [MutationRequest(u["id"], f"/api/v1/groups/{gid}/users/{u['id']}") for u in users],
            action_type="BULK_REMOVE_USERS_FROM_GROUP",
            description=f"Removed {len(users)} deprovisioned users from {name}",
        )
        print(result.succeeded, result.failed, result.not_attempted)
    """

    def __init__(
        self,
        scheduler: ApiScheduler,
        *,
        undo_log: UndoLog | None = None,
        config: BulkConfig | None = None,
        clock: Clock = SYSTEM_CLOCK,
        priority: RequestPriority = RequestPriority.LOW,
        origin: str = "bulk",
    ) -> None:
        self._scheduler = scheduler
        self._config = config or get_settings().bulk
        self._undo_log = undo_log or UndoLog(self._config)
        self._clock = clock
        self._priority = priority
        self._origin = origin
        self._cancelled = False

    @property
    def undo_log(self) -> UndoLog:
        return self._undo_log

    def cancel(self) -> None:
        """Stop the current run before its next item."""
        self._cancelled = True
        self._scheduler.cancel_origin(self._origin)

    async def execute(
        self,
        mutations: Sequence[MutationRequest],
        *,
        action_type: str,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
        progress: ProgressTracker | None = None,
    ) -> BulkResult:
        """Apply every mutation in order.

        Args:
            mutations: Items to mutate
            action_type: Undo log action type
            description: Human-readable description for the undo log
            metadata: Extra data stored on the undo action
            progress: Optional tracker receiving per-item updates

        Returns:
            BulkResult; ``action_id`` is set once any mutation succeeded
        """
        log = bind_operation(action_type, self._origin)
        description = description or f"{action_type} ({len(mutations)} items)"

        def on_success(mutation: MutationRequest, result: BulkResult) -> None:
            if result.action_id is None:
                result.action_id = self._undo_log.record(action_type, description, metadata).id
            self._undo_log.add_sub_item(result.action_id, mutation.item_id, mutation.data)

        result = await self._run(mutations, progress, log, on_success)
        log.info(
            "Bulk run finished: {} succeeded, {} failed, {} not attempted",
            result.succeeded,
            result.failed,
            result.not_attempted,
        )
        return result

    async def reverse(
        self,
        action_id: str,
        inverse: InverseFactory,
        progress: ProgressTracker | None = None,
    ) -> BulkResult:
        """Reverse the still-completed sub-items of a recorded action.

        Args:
            action_id: Undo log action to reverse
            inverse: Builds the inverse mutation for one sub-item
            progress: Optional tracker

        Returns:
            BulkResult for the reversal run

        Raises:
            KeyError: If the action is not in the undo log
        """
        action = self._undo_log.require(action_id)
        log = bind_operation(f"UNDO_{action.action_type}", self._origin)
        items = action.reversible_items()
        mutations = [replace(inverse(item), item_id=item.id) for item in items]

        def on_success(mutation: MutationRequest, result: BulkResult) -> None:
            self._undo_log.mark_sub_item(action_id, mutation.item_id, SubItemStatus.UNDONE)

        def on_failure(mutation: MutationRequest) -> None:
            self._undo_log.mark_sub_item(action_id, mutation.item_id, SubItemStatus.FAILED)

        result = await self._run(mutations, progress, log, on_success, on_failure)
        result.action_id = action_id
        status = action.refresh_status()
        log.info("Undo of {} finished with status {}", action_id, status.value)
        return result

    async def _run(
        self,
        mutations: Sequence[MutationRequest],
        progress: ProgressTracker | None,
        log: Logger,
        on_success: Callable[[MutationRequest, BulkResult], None],
        on_failure: Callable[[MutationRequest], None] | None = None,
    ) -> BulkResult:
        self._cancelled = False
        result = BulkResult(total=len(mutations))
        if progress is not None:
            progress.total = len(mutations)
            progress.start()

        delay = self._config.item_delay_ms / 1000
        for index, mutation in enumerate(mutations):
            if self._cancelled:
                result.stopped_reason = "cancelled"
                break
            if index > 0 and delay > 0:
                await self._clock.sleep(delay)
                if self._cancelled:
                    result.stopped_reason = "cancelled"
                    break

            if progress is not None:
                progress.set_current(mutation.display_name)

            try:
                await self._scheduler.submit(
                    mutation.endpoint,
                    mutation.method,
                    mutation.body,
                    priority=self._priority,
                    origin=self._origin,
                )
            except CancelledRequestError as e:
                result.stopped_reason = "cancelled" if self._cancelled else f"queue cleared: {e}"
                break
            except AuthorizationLostError as e:
                self._record_failure(result, mutation, e, progress, on_failure)
                result.stopped_reason = f"authorization lost: {e}"
                log.warning(
                    "403 on {}; stopping after first authorization error",
                    mutation.display_name,
                )
                break
            except SchedulerError as e:
                self._record_failure(result, mutation, e, progress, on_failure)
                continue

            result.succeeded += 1
            on_success(mutation, result)
            if progress is not None:
                progress.increment()

        result.not_attempted = result.total - result.succeeded - result.failed

        if progress is not None:
            if result.stopped_reason == "cancelled":
                progress.cancel()
            elif result.stopped_reason:
                progress.stop(result.stopped_reason)
            else:
                progress.complete()
        return result

    def _record_failure(
        self,
        result: BulkResult,
        mutation: MutationRequest,
        error: SchedulerError,
        progress: ProgressTracker | None,
        on_failure: Callable[[MutationRequest], None] | None,
    ) -> None:
        result.failed += 1
        result.errors.append((mutation.item_id, str(error)))
        if on_failure is not None:
            on_failure(mutation)
        if progress is not None:
            progress.increment_failed(error=f"{mutation.display_name}: {error}")
