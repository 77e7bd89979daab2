"""Snapshot records read from the git log."""

from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel


class Snapshot(BaseModel):
    """A single commit, numbered from the oldest (version 1)."""

    id: str
    author: str
    timestamp: str
    subject: str
    version: int


class SnapshotPage(BaseModel):
    """One page of history for progressive loading."""

    items: List[Snapshot]
    has_more: bool
    total_count: int
    offset: int
    next_offset: int


class BranchInfo(BaseModel):
    """Current branch name and version number (both None when unknown)."""

    branch: Optional[str] = None
    version: Optional[int] = None


class RepositoryInfo(BaseModel):
    """A repository discovered in the workspace."""

    path: Path
    name: str
    is_valid: bool = True

    model_config = {"arbitrary_types_allowed": True}
