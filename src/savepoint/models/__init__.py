"""Data models for savepoint."""

from .change import ChangeSet, PendingChange
from .outcome import RestoreOutcome, RestoreState
from .snapshot import BranchInfo, RepositoryInfo, Snapshot, SnapshotPage

__all__ = [
    "BranchInfo",
    "ChangeSet",
    "PendingChange",
    "RepositoryInfo",
    "RestoreOutcome",
    "RestoreState",
    "Snapshot",
    "SnapshotPage",
]
