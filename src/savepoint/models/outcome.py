"""Restore results and the restore state machine."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class RestoreState(str, Enum):
    """Phases a restore passes through."""

    IDLE = "idle"
    CHECKING_CHANGES = "checking_changes"
    CONFIRMING = "confirming"
    BACKING_UP = "backing_up"
    CLEANING = "cleaning"
    DIFFING = "diffing"
    RESTORING = "restoring"
    COMMITTING = "committing"
    RESETTING_INDEX = "resetting_index"
    RECOVERING = "recovering"
    DONE = "done"
    FAILED = "failed"


# States after which a failure leaves the repository partially modified.
DESTRUCTIVE_STATES = frozenset(
    {
        RestoreState.CLEANING,
        RestoreState.DIFFING,
        RestoreState.RESTORING,
        RestoreState.COMMITTING,
        RestoreState.RESETTING_INDEX,
    }
)


class RestoreOutcome(BaseModel):
    """Result of a restore request."""

    success: bool
    message: Optional[str] = None
    new_snapshot_id: Optional[str] = None
    previous_snapshot_id: Optional[str] = None
    branch: Optional[str] = None
    backup_branch: Optional[str] = None
