"""Higher-level operations built on the scheduler.

Components:
- CursorPaginator: loads whole collections via link headers
- BulkMutationExecutor: sequential mutations with 403 stop and undo
- UndoLog: bounded history of bulk actions
- ProgressTracker: observable progress reporting
"""

from .bulk import BulkMutationExecutor, BulkResult, MutationRequest
from .paginator import CursorPaginator, parse_next_link
from .progress import ProgressCallback, ProgressState, ProgressTracker, ProgressUpdate
from .undo import ActionStatus, SubItem, SubItemStatus, UndoAction, UndoLog

__all__ = [
    # Bulk execution
    "BulkMutationExecutor",
    "BulkResult",
    "MutationRequest",
    # Pagination
    "CursorPaginator",
    "parse_next_link",
    # Progress tracking
    "ProgressCallback",
    "ProgressState",
    "ProgressTracker",
    "ProgressUpdate",
    # Undo
    "ActionStatus",
    "SubItem",
    "SubItemStatus",
    "UndoAction",
    "UndoLog",
]
