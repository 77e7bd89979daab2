"""Versioned snapshot listings built from ``git log``."""

import logging
from pathlib import Path
from typing import Callable, List, Optional, Union

from savepoint.core.cache import TTLCache
from savepoint.core.runner import CommandRunner
from savepoint.exceptions import CommandFailure, InvalidParameters
from savepoint.models import BranchInfo, Snapshot, SnapshotPage

logger = logging.getLogger(__name__)

FIELD_SEPARATOR = "|"
DETAIL_FORMAT = "--pretty=format:%h|%an|%ad|%s"
DETAIL_DATE = "--date=format:%Y-%m-%d %H:%M:%S"
RELATIVE_FORMAT = "--pretty=format:%h|%an|%ar|%s"

PathLike = Union[str, Path]


def parse_log(stdout: str, total_count: int, offset: int = 0) -> List[Snapshot]:
    """Turn ``hash|author|date|subject`` lines into numbered snapshots.

    ``version = total_count - offset - position``; position counts every
    line, so a dropped line does not shift the numbering of the rest.
    Lines without all four fields are dropped. The subject is the last
    field, so a literal ``|`` inside it survives, but one in an author name
    does not.
    """
    snapshots: List[Snapshot] = []
    for position, line in enumerate(stdout.split("\n")):
        if not line.strip():
            continue
        fields = line.split(FIELD_SEPARATOR, 3)
        if len(fields) != 4:
            logger.debug("Dropping unparseable log line: %r", line)
            continue
        snapshot_id, author, timestamp, subject = fields
        if not snapshot_id:
            continue
        snapshots.append(
            Snapshot(
                id=snapshot_id,
                author=author or "Unknown",
                timestamp=timestamp,
                subject=subject or "No subject",
                version=total_count - offset - position,
            )
        )
    return snapshots


class HistoryReader:
    """Reads snapshot history for a repository.

    Results are cached per root/limit/offset/query shape until the cache
    times out or :meth:`invalidate` is called after a mutating operation.
    """

    def __init__(
        self,
        runner: CommandRunner,
        resolve_root: Callable[[], Path],
        cache_timeout: float = 5 * 60,
        default_limit: int = 30,
        page_size: int = 20,
        quickpick_size: int = 20,
    ):
        self.runner = runner
        self._resolve_root = resolve_root
        self.cache = TTLCache(cache_timeout)
        self.default_limit = default_limit
        self.page_size = page_size
        self.quickpick_size = quickpick_size

    def _root(self, root: Optional[PathLike]) -> Path:
        return Path(root) if root else self._resolve_root()

    def count_snapshots(self, root: Optional[PathLike] = None, rev: str = "HEAD") -> int:
        """Number of commits reachable from ``rev``."""
        result = self.runner.run(["rev-list", "--count", rev], self._root(root))
        return int(result.stdout.strip() or 0)

    def list_snapshots(
        self,
        limit: Optional[int] = None,
        root: Optional[PathLike] = None,
        use_cache: bool = True,
    ) -> List[Snapshot]:
        """Newest-first snapshots, the newest numbered with the total count."""
        limit = self.default_limit if limit is None else limit
        if limit < 0:
            raise InvalidParameters(f"limit must not be negative: {limit}")
        return self._list(limit, self._root(root), use_cache, detailed=True)

    def list_recent_snapshots(self, root: Optional[PathLike] = None) -> List[Snapshot]:
        """Short uncached listing with relative dates, for quick pickers."""
        return self._list(self.quickpick_size, self._root(root), False, detailed=False)

    def _list(self, limit: int, repo: Path, use_cache: bool, detailed: bool) -> List[Snapshot]:
        shape = "detail" if detailed else "relative"
        cache_key = ("snapshots", str(repo), limit, shape)
        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        total = self.count_snapshots(repo)
        args = ["log", "-n", str(limit)]
        args += [DETAIL_FORMAT, DETAIL_DATE] if detailed else [RELATIVE_FORMAT]
        result = self.runner.run(args, repo)
        snapshots = parse_log(result.stdout, total)

        if use_cache:
            self.cache.set(cache_key, snapshots)
        return snapshots

    def list_snapshots_paginated(
        self,
        offset: int = 0,
        limit: Optional[int] = None,
        root: Optional[PathLike] = None,
        use_cache: bool = True,
    ) -> SnapshotPage:
        """One page of history starting ``offset`` snapshots below HEAD."""
        limit = self.page_size if limit is None else limit
        if offset < 0 or limit < 0:
            raise InvalidParameters(f"offset and limit must not be negative: {offset}, {limit}")
        repo = self._root(root)

        cache_key = ("page", str(repo), offset, limit)
        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        total = self.count_snapshots(repo)
        result = self.runner.run(
            ["log", f"--skip={offset}", "-n", str(limit), DETAIL_FORMAT, DETAIL_DATE],
            repo,
        )
        items = parse_log(result.stdout, total, offset)
        page = SnapshotPage(
            items=items,
            has_more=offset + len(items) < total,
            total_count=total,
            offset=offset,
            next_offset=offset + len(items),
        )

        if use_cache:
            self.cache.set(cache_key, page)
        return page

    def get_current_branch_info(self, root: Optional[PathLike] = None) -> BranchInfo:
        """Current branch and its version number.

        Detached HEAD reports no branch; a repository without commits
        reports neither.
        """
        repo = self._root(root)
        try:
            branch = self.runner.run(["rev-parse", "--abbrev-ref", "HEAD"], repo).stdout.strip()
            version = self.count_snapshots(repo)
        except CommandFailure as e:
            logger.debug("No branch information for %s: %s", repo, e)
            return BranchInfo()
        return BranchInfo(branch=None if branch == "HEAD" else branch, version=version)

    def get_current_snapshot_id(self, root: Optional[PathLike] = None) -> str:
        return self.runner.run(["rev-parse", "HEAD"], self._root(root)).stdout.strip()

    def get_snapshot_details(self, snapshot_id: str, root: Optional[PathLike] = None) -> str:
        """``git show --stat`` text for one snapshot."""
        if not snapshot_id:
            raise InvalidParameters("No snapshot id given")
        result = self.runner.run(
            ["show", snapshot_id, "--stat", "--pretty=fuller"], self._root(root)
        )
        return result.stdout

    def invalidate(self) -> None:
        self.cache.invalidate_all()
