"""Uncommitted change records produced by ``git status``."""

from typing import List

from pydantic import BaseModel


class PendingChange(BaseModel):
    """One line of porcelain status output."""

    status_code: str
    file_name: str
    kind: str

    @property
    def labels(self) -> List[str]:
        """Individual labels making up ``kind``."""
        return [label.strip() for label in self.kind.split(",") if label.strip()]


class ChangeSet(BaseModel):
    """Uncommitted working-tree state."""

    has_changes: bool = False
    files: List[PendingChange] = []
    summary: str = ""
