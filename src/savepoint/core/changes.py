"""Uncommitted working-tree state from ``git status --porcelain``."""

import logging
from pathlib import Path
from typing import Callable, List, Optional, Union

from savepoint.core.runner import CommandRunner
from savepoint.exceptions import CommandFailure
from savepoint.models import ChangeSet, PendingChange

logger = logging.getLogger(__name__)

# Index (first) column of a porcelain status code.
INDEX_LABELS = {
    "M": "modified",
    "A": "added",
    "D": "deleted",
    "R": "renamed",
    "C": "copied",
    "?": "untracked",
    " ": None,
}

# Worktree (second) column. Anything not listed adds no label.
WORKTREE_LABELS = {
    "M": "modified",
    "D": "deleted",
    "?": "untracked",
}


def parse_file_status(status: str) -> str:
    """Map a two-character status code to a comma-separated label string.

    Both columns are checked, so ``MM`` is ``"modified, modified"``.
    ``??`` is reported once as ``"untracked"``; a blank code is
    ``"unchanged"`` and an unrecognised index column is ``"unknown"``.
    """
    status = status.ljust(2)
    first, second = status[0], status[1]
    labels: List[str] = []

    label = INDEX_LABELS.get(first, "unknown")
    if label:
        labels.append(label)

    label = WORKTREE_LABELS.get(second)
    if label and not (label == "untracked" and first == "?"):
        labels.append(label)

    return ", ".join(labels) if labels else "unchanged"


def parse_status_output(stdout: str) -> List[PendingChange]:
    changes = []
    for line in stdout.split("\n"):
        if not line.strip():
            continue
        status = line[:2]
        changes.append(
            PendingChange(
                status_code=status,
                file_name=line[3:],
                kind=parse_file_status(status),
            )
        )
    return changes


class ChangeInspector:
    """Reports what would be recorded by the next save."""

    def __init__(self, runner: CommandRunner, resolve_root: Callable[[], Path]):
        self.runner = runner
        self._resolve_root = resolve_root

    def get_uncommitted_changes(self, root: Optional[Union[str, Path]] = None) -> ChangeSet:
        """Per-file status plus a diff-stat summary.

        If the diff-stat query fails (or reports nothing, as with only
        untracked files) the summary becomes ``"<N> file(s) changed"``.
        """
        repo = Path(root) if root else self._resolve_root()
        result = self.runner.run(["status", "--porcelain"], repo)
        if not result.stdout.strip():
            return ChangeSet(has_changes=False, files=[], summary="")

        files = parse_status_output(result.stdout)
        try:
            summary = self.runner.run(["diff", "--stat"], repo).stdout.strip()
        except CommandFailure as e:
            logger.debug("diff --stat failed, using generated summary: %s", e)
            summary = ""
        if not summary:
            summary = f"{len(files)} file(s) changed"
        return ChangeSet(has_changes=True, files=files, summary=summary)

    def is_clean(self, root: Optional[Union[str, Path]] = None) -> bool:
        repo = Path(root) if root else self._resolve_root()
        return not self.runner.run(["status", "--porcelain"], repo).stdout.strip()
