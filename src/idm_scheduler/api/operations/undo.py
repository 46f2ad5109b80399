"""In-memory undo log for bulk mutations.

Each bulk run records one ``UndoAction`` whose sub-items are the
individual mutations that succeeded. Reversal works sub-item by
sub-item so a partially reversed action can be retried.
"""

from __future__ import annotations

import uuid
from collections import deque
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import Field

from idm_scheduler.config import BulkConfig, get_settings
from idm_scheduler.logging import get_logger
from idm_scheduler.schemas import SchemaBase

logger = get_logger(__name__)


class SubItemStatus(StrEnum):
    COMPLETED = "completed"
    UNDONE = "undone"
    FAILED = "failed"
    SKIPPED = "skipped"


class ActionStatus(StrEnum):
    COMPLETED = "completed"
    UNDONE = "undone"
    PARTIAL = "partial"
    FAILED = "failed"


def _now() -> datetime:
    return datetime.now(UTC)


class SubItem(SchemaBase):
    """One mutation inside a bulk action.

    ``id`` is unique within the log; ``item_id`` is the caller's id for the
    mutated item and may repeat.
    """

    id: str = Field(default_factory=lambda: f"sub_{uuid.uuid4().hex[:12]}")
    item_id: str
    status: SubItemStatus = SubItemStatus.COMPLETED
    timestamp: datetime = Field(default_factory=_now)
    data: dict[str, Any] = Field(default_factory=dict)


class UndoAction(SchemaBase):
    """A recorded bulk action."""

    id: str = Field(default_factory=lambda: f"action_{uuid.uuid4().hex[:12]}")
    action_type: str
    timestamp: datetime = Field(default_factory=_now)
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: ActionStatus = ActionStatus.COMPLETED
    sub_items: list[SubItem] = Field(default_factory=list)

    def get_sub_item(self, sub_item_id: str) -> SubItem | None:
        return next((item for item in self.sub_items if item.id == sub_item_id), None)

    def reversible_items(self) -> list[SubItem]:
        """Sub-items that can still be reversed."""
        return [item for item in self.sub_items if item.status is SubItemStatus.COMPLETED]

    def refresh_status(self) -> ActionStatus:
        """Derive the action status from its sub-items after a reversal."""
        statuses = {item.status for item in self.sub_items}
        if not statuses or statuses <= {SubItemStatus.UNDONE, SubItemStatus.SKIPPED}:
            self.status = ActionStatus.UNDONE
        elif SubItemStatus.UNDONE in statuses:
            self.status = ActionStatus.PARTIAL
        elif SubItemStatus.FAILED in statuses:
            self.status = ActionStatus.FAILED
        return self.status


class UndoLog:
    """Bounded history of actions, newest first.

    Usage:
        log = UndoLog()
        action = log.record("BULK_REMOVE_USERS_FROM_GROUP", "Removed 3 users from Sales")
        log.add_sub_item(action.id, "00u1", {"userId": "00u1"})
    """

    def __init__(self, config: BulkConfig | None = None) -> None:
        config = config or get_settings().bulk
        self._max_size = config.undo_history_size
        self._actions: deque[UndoAction] = deque(maxlen=self._max_size)

    def __len__(self) -> int:
        return len(self._actions)

    @property
    def max_size(self) -> int:
        return self._max_size

    def record(
        self,
        action_type: str,
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> UndoAction:
        """Add a new action; the oldest is dropped once the log is full."""
        action = UndoAction(
            action_type=action_type,
            description=description,
            metadata=metadata or {},
        )
        self._actions.appendleft(action)
        logger.debug("Recorded undo action {} ({})", action.id, action_type)
        return action

    def add_sub_item(
        self,
        action_id: str,
        item_id: str,
        data: dict[str, Any] | None = None,
    ) -> SubItem:
        """Attach a successful mutation to an action under a fresh sub-item id.

        Raises:
            KeyError: If the action is unknown
        """
        action = self.require(action_id)
        item = SubItem(item_id=item_id, data=data or {})
        action.sub_items.append(item)
        return item

    def mark_sub_item(self, action_id: str, sub_item_id: str, status: SubItemStatus) -> SubItem:
        """Update one sub-item's status and timestamp."""
        action = self.require(action_id)
        item = action.get_sub_item(sub_item_id)
        if item is None:
            raise KeyError(f"Unknown sub-item {sub_item_id!r} on {action_id}")
        item.status = status
        item.timestamp = _now()
        return item

    def get(self, action_id: str) -> UndoAction | None:
        return next((a for a in self._actions if a.id == action_id), None)

    def require(self, action_id: str) -> UndoAction:
        action = self.get(action_id)
        if action is None:
            raise KeyError(f"Unknown undo action {action_id!r}")
        return action

    def actions(self) -> list[UndoAction]:
        """All actions, newest first."""
        return list(self._actions)

    def clear(self) -> None:
        self._actions.clear()
