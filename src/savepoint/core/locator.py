"""Repository discovery for the active workspace.

Discovery tries an ordered list of independent strategies and stops at the
first one that yields a repository root:

1. a bounded-depth filesystem scan of every workspace folder,
2. the host's own VCS integration (when one is attached),
3. a direct ``git rev-parse --show-toplevel`` probe of the first folder.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, NamedTuple, Optional, Protocol, Sequence

from savepoint.core.cache import TTLCache
from savepoint.core.runner import CommandRunner
from savepoint.exceptions import CommandFailure, NoRepositoryFound
from savepoint.models import RepositoryInfo

logger = logging.getLogger(__name__)

NO_REPOSITORIES = (
    "No Git repositories found in the current workspace. Please open a Git repository."
)
SKIPPED_DIRECTORIES = frozenset({"node_modules", "dist", "build"})
PRIMARY_KEY = "primary-repo-path"


class HostVcs(Protocol):
    """The editor's own source-control integration."""

    def repositories(self) -> Optional[List[Path]]:
        """Managed repository roots, or None while the integration is still loading."""


class LocateResult(NamedTuple):
    """Outcome of one discovery strategy: a root, an error, or neither."""

    root: Optional[Path] = None
    error: Optional[str] = None


def is_repository(path: Path) -> bool:
    """True when ``path`` holds git metadata (a ``.git`` directory or file)."""
    return (path / ".git").exists()


def scan_folder(folder: Path, max_depth: int, depth: int = 0) -> List[Path]:
    """Recursively collect repositories under ``folder``.

    Hidden directories and build output folders are skipped, and the scan
    does not descend into a repository once one is found.
    """
    if is_repository(folder):
        return [folder]
    if depth >= max_depth:
        return []

    try:
        entries = sorted(folder.iterdir())
    except OSError:
        return []

    found: List[Path] = []
    for entry in entries:
        if entry.name.startswith(".") or entry.name in SKIPPED_DIRECTORIES:
            continue
        if not entry.is_dir():
            continue
        found.extend(scan_folder(entry, max_depth, depth + 1))
    return found


class RepositoryLocator:
    """Resolves and caches the repository root for a set of workspace folders."""

    def __init__(
        self,
        workspace_folders: Sequence[Path],
        runner: Optional[CommandRunner] = None,
        host: Optional[HostVcs] = None,
        scan_depth: int = 2,
        poll_attempts: int = 5,
        poll_interval: float = 0.1,
        cache_seconds: float = 5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.workspace_folders = [Path(f).resolve() for f in workspace_folders]
        self.runner = runner or CommandRunner()
        self.host = host
        self.scan_depth = scan_depth
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self._cache = TTLCache(cache_seconds)
        self._sleep = sleep
        self.strategies: List[Callable[[], LocateResult]] = [
            self._scan_workspace,
            self._ask_host,
            self._probe_workspace,
        ]

    def resolve_root(self) -> Path:
        """Return the primary repository root.

        Both outcomes are cached briefly, so a burst of calls triggers at most
        one scan; a cached failure is raised again with the same message.

        Raises:
            NoRepositoryFound: Every strategy came up empty
        """
        cached = self._cache.get(PRIMARY_KEY)
        if cached is not None:
            root, error = cached
            if error is not None:
                raise NoRepositoryFound(error)
            return root

        last_error: Optional[str] = None
        for strategy in self.strategies:
            try:
                result = strategy()
            except Exception as e:
                logger.debug("Repository strategy %s failed: %s", strategy.__name__, e)
                result = LocateResult(error=str(e))
            if result.root is not None:
                logger.debug("Repository resolved by %s: %s", strategy.__name__, result.root)
                self._cache.set(PRIMARY_KEY, (result.root, None))
                return result.root
            if result.error:
                last_error = result.error

        message = last_error or NO_REPOSITORIES
        self._cache.set(PRIMARY_KEY, (None, message))
        raise NoRepositoryFound(message)

    def has_repository(self) -> bool:
        try:
            self.resolve_root()
        except NoRepositoryFound as e:
            logger.info("No repository found - %s", e)
            return False
        return True

    def find_repositories(self, max_depth: Optional[int] = None) -> List[RepositoryInfo]:
        """Every repository the workspace scan finds."""
        return [
            RepositoryInfo(path=path, name=path.name or str(path))
            for path in self.scan(max_depth)
        ]

    def scan(self, max_depth: Optional[int] = None) -> List[Path]:
        """Scan all workspace folders in parallel, preserving folder order."""
        depth = self.scan_depth if max_depth is None else max_depth
        if not self.workspace_folders:
            return []
        with ThreadPoolExecutor(max_workers=len(self.workspace_folders)) as pool:
            results = pool.map(lambda f: scan_folder(f, depth), self.workspace_folders)
        return [repo for folder_repos in results for repo in folder_repos]

    def invalidate(self) -> None:
        """Forget the cached resolution."""
        self._cache.invalidate_all()

    def _scan_workspace(self) -> LocateResult:
        repositories = self.scan()
        if repositories:
            return LocateResult(root=repositories[0])
        return LocateResult()

    def _ask_host(self) -> LocateResult:
        if self.host is None:
            return LocateResult()

        for _ in range(self.poll_attempts):
            repositories = self.host.repositories()
            if repositories:
                return LocateResult(root=Path(repositories[0]))
            if repositories is not None:
                # Integration is ready but manages nothing.
                return LocateResult()
            self._sleep(self.poll_interval)
        return LocateResult(error="Git integration is not ready yet. Please try again.")

    def _probe_workspace(self) -> LocateResult:
        if not self.workspace_folders:
            return LocateResult(error="Please open a folder first.")
        folder = self.workspace_folders[0]
        try:
            result = self.runner.run(["rev-parse", "--show-toplevel"], folder, max_retries=0)
        except CommandFailure as e:
            return LocateResult(error=str(e))
        toplevel = result.stdout.strip()
        return LocateResult(root=Path(toplevel) if toplevel else folder)
