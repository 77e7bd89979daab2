"""Snapshot engine: restore, save, backups and repository setup.

Restores are append-only. The target snapshot's tree is copied into the
working directory and recorded as a new commit on the current branch, so
history is never rewritten. If any step after the working tree has been
touched fails, the engine rolls the repository back to the branch and
commit captured before it started, then reports the original failure.
"""

import logging
import os
import re
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Union

from savepoint.config import SavepointConfig
from savepoint.core.changes import ChangeInspector
from savepoint.core.history import HistoryReader
from savepoint.core.locator import HostVcs, RepositoryLocator
from savepoint.core.messages import MessageGenerator
from savepoint.core.runner import CommandRunner, remove_lock_file
from savepoint.exceptions import (
    CommandFailure,
    InvalidParameters,
    NoChangesToSave,
    RestoreFailed,
)
from savepoint.models import ChangeSet, RestoreOutcome, RestoreState
from savepoint.models.outcome import DESTRUCTIVE_STATES

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

CANCELLED_MESSAGE = "Restore cancelled by user."
NO_OP_MESSAGE = "Already at this version; nothing to restore."
FIRST_SAVE_MESSAGE = "First save! Welcome to savepoint version tracking"
PLACEHOLDER_README = "# My Project\n\nWelcome to your version-tracked project!\n"
BACKUP_STAMP_FORMAT = "%Y-%m-%dT%H-%M-%S-%f"
BACKUP_STAMP_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{6}")


def _stamp_from_branch(name: str) -> Optional[datetime]:
    """UTC creation time encoded in a backup branch name, if any."""
    match = BACKUP_STAMP_PATTERN.search(name)
    if not match:
        return None
    return datetime.strptime(match.group(0), BACKUP_STAMP_FORMAT).replace(tzinfo=timezone.utc)


class EngineHooks:
    """Callbacks the engine invokes on its host.

    The defaults never approve a destructive action and ignore progress;
    a UI subclasses this to prompt the user.
    """

    def confirm_discard(self, changes: ChangeSet) -> bool:
        """Ask whether uncommitted ``changes`` may be thrown away."""
        return False

    def confirm_setup(self, path: Path) -> bool:
        """Ask whether version tracking should be set up in ``path``."""
        return True

    def progress(self, increment: int, message: str) -> None:
        """Report that the current operation reached ``increment`` percent."""


class _RestoreRun:
    """State captured for one restore, used for recovery."""

    def __init__(self, root: Path, target: str):
        self.root = root
        self.target = target
        self.state = RestoreState.IDLE
        self.branch: Optional[str] = None
        self.snapshot_id: Optional[str] = None
        self.backup_branch: Optional[str] = None

    def enter(self, state: RestoreState) -> None:
        logger.debug("Restore %s: %s -> %s", self.target, self.state.value, state.value)
        self.state = state


class SnapshotEngine:
    """Coordinates history, change inspection and mutating git operations."""

    def __init__(
        self,
        runner: CommandRunner,
        locator: RepositoryLocator,
        config: Optional[SavepointConfig] = None,
        hooks: Optional[EngineHooks] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or SavepointConfig()
        self.runner = runner
        self.locator = locator
        self.hooks = hooks or EngineHooks()
        self.history = HistoryReader(
            runner,
            locator.resolve_root,
            cache_timeout=self.config.cache_timeout_seconds,
            default_limit=self.config.max_snapshots,
            page_size=self.config.page_size,
            quickpick_size=self.config.quickpick_size,
        )
        self.changes = ChangeInspector(runner, locator.resolve_root)
        self.messages = MessageGenerator(max_size=self.config.message_cache_size)
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def for_workspace(
        cls,
        workspace_folders: Sequence[PathLike],
        config: Optional[SavepointConfig] = None,
        hooks: Optional[EngineHooks] = None,
        host: Optional[HostVcs] = None,
    ) -> "SnapshotEngine":
        """Build an engine and its collaborators from settings."""
        config = config or SavepointConfig()
        runner = CommandRunner(
            max_retries=config.max_retries, retry_delay_ms=config.retry_delay_ms
        )
        locator = RepositoryLocator(
            [Path(f) for f in workspace_folders],
            runner=runner,
            host=host,
            scan_depth=config.scan_depth,
            poll_attempts=config.host_poll_attempts,
            poll_interval=config.host_poll_interval,
            cache_seconds=config.locator_cache_seconds,
        )
        return cls(runner, locator, config=config, hooks=hooks)

    # === Helpers ===

    def _root(self, root: Optional[PathLike]) -> Path:
        return Path(root) if root else self.locator.resolve_root()

    def _git(self, repo: Path, *args: str) -> str:
        return self.runner.run(list(args), repo).stdout

    @contextmanager
    def _repository_lock(self, repo: Path) -> Iterator[None]:
        """Serialize mutating operations on one repository within this process."""
        key = str(repo.resolve())
        with self._locks_guard:
            lock = self._locks.setdefault(key, threading.RLock())
        with lock:
            yield

    def clear_caches(self) -> None:
        """Forget cached history, repository resolution and messages."""
        self.history.invalidate()
        self.locator.invalidate()
        self.messages.clear_cache()

    def current_branch(self, root: Optional[PathLike] = None) -> str:
        return self._git(self._root(root), "rev-parse", "--abbrev-ref", "HEAD").strip()

    def _resolve_snapshot(self, repo: Path, snapshot_id: str) -> str:
        """Full commit id for ``snapshot_id``."""
        try:
            return self._git(repo, "rev-parse", "--verify", f"{snapshot_id}^{{commit}}").strip()
        except CommandFailure as e:
            raise InvalidParameters(f"Unknown snapshot: {snapshot_id}") from e

    # === Restore ===

    def restore(
        self,
        target_snapshot_id: str,
        root: Optional[PathLike] = None,
        skip_confirmation: bool = False,
    ) -> RestoreOutcome:
        """Restore ``target_snapshot_id`` as a new commit on the current branch.

        Args:
            target_snapshot_id: Snapshot (commit) to bring back
            root: Repository root; resolved from the workspace when omitted
            skip_confirmation: Discard uncommitted changes without asking

        Returns:
            The outcome. Declining the confirmation yields ``success=False``
            with nothing modified; restoring the current state is a no-op
            success whose ``new_snapshot_id`` is the current HEAD.

        Raises:
            InvalidParameters: No or unknown snapshot id
            RestoreFailed: A step failed; the repository was rolled back
                (``recovered`` reports whether that worked)
        """
        if not target_snapshot_id or not target_snapshot_id.strip():
            raise InvalidParameters("Invalid restore parameters: no snapshot id")

        repo = self._root(root)
        with self._repository_lock(repo):
            try:
                return self._restore(_RestoreRun(repo, target_snapshot_id.strip()), skip_confirmation)
            finally:
                self.clear_caches()

    def _restore(self, run: _RestoreRun, skip_confirmation: bool) -> RestoreOutcome:
        repo = run.root
        remove_lock_file(repo)

        run.branch = self.current_branch(repo)
        run.snapshot_id = self.history.get_current_snapshot_id(repo)
        target = self._resolve_snapshot(repo, run.target)

        run.enter(RestoreState.CHECKING_CHANGES)
        pending = self.changes.get_uncommitted_changes(repo)
        if pending.has_changes and not skip_confirmation:
            run.enter(RestoreState.CONFIRMING)
            if not self.hooks.confirm_discard(pending):
                run.enter(RestoreState.IDLE)
                return RestoreOutcome(
                    success=False,
                    message=CANCELLED_MESSAGE,
                    previous_snapshot_id=run.snapshot_id,
                    branch=run.branch,
                )

        if self.config.backup_before_restore:
            run.enter(RestoreState.BACKING_UP)
            try:
                run.backup_branch = self.create_backup(repo)
            except CommandFailure as e:
                run.enter(RestoreState.FAILED)
                raise RestoreFailed(f"Failed to create backup: {e}", recovered=True) from e

        try:
            new_snapshot_id = self._apply_snapshot(run, target, pending.has_changes)
        except Exception as err:
            recovered = self._recover(run)
            run.enter(RestoreState.FAILED)
            raise RestoreFailed(f"Failed to restore version: {err}", recovered=recovered) from err

        run.enter(RestoreState.DONE)
        if run.backup_branch:
            self._sweep_quietly(repo)

        no_op = new_snapshot_id == run.snapshot_id
        return RestoreOutcome(
            success=True,
            message=NO_OP_MESSAGE if no_op else f"Restored {run.target}",
            new_snapshot_id=new_snapshot_id,
            previous_snapshot_id=run.snapshot_id,
            branch=run.branch,
            backup_branch=run.backup_branch,
        )

    def _apply_snapshot(self, run: _RestoreRun, target: str, discard: bool) -> str:
        """Destructive part of a restore; returns the resulting HEAD id."""
        repo = run.root

        run.enter(RestoreState.CLEANING)
        if discard:
            self._git(repo, "reset", "--hard")
            self._git(repo, "clean", "-fd")

        run.enter(RestoreState.DIFFING)
        if not self._git(repo, "diff", "--name-only", "HEAD", target).strip():
            logger.info("Target %s is identical to HEAD; nothing to restore", target)
            return run.snapshot_id

        run.enter(RestoreState.RESTORING)
        self._git(repo, "read-tree", target)
        self._git(repo, "checkout-index", "-a", "-f")
        self._git(repo, "clean", "-fd")

        if not self._git(repo, "diff", "--cached", "--name-only").strip():
            logger.warning("Nothing staged after loading %s; skipping commit", target)
            self._git(repo, "reset", "--hard")
            return run.snapshot_id

        run.enter(RestoreState.COMMITTING)
        version = self._git(repo, "rev-list", "--count", target).strip()
        self._commit_from_file(repo, self._restore_message(version, target, run.snapshot_id))

        run.enter(RestoreState.RESETTING_INDEX)
        self._git(repo, "reset", "--hard")
        return self.history.get_current_snapshot_id(repo)

    def _restore_message(self, version: str, target: str, previous: Optional[str]) -> str:
        return (
            f"Restored version {version}\n\n"
            "This commit restores the repository to a previous state.\n"
            f"Restored from: {target}\n"
            f"Previous HEAD: {previous}\n"
            f"Restore time: {self._now().isoformat()}\n"
        )

    def _commit_from_file(self, repo: Path, message: str) -> None:
        """Commit with ``git commit -F`` so multi-line messages survive intact."""
        fd, message_file = tempfile.mkstemp(prefix="savepoint-msg-", suffix=".txt")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(message)
            self._git(repo, "commit", "-F", message_file)
        finally:
            Path(message_file).unlink(missing_ok=True)

    def _recover(self, run: _RestoreRun) -> bool:
        """Return the repository to the branch and commit captured before the restore.

        Returns True when HEAD is back at the captured commit. Recovery
        errors are logged, never raised, so the original failure is what
        reaches the caller.
        """
        if run.state not in DESTRUCTIVE_STATES or run.snapshot_id is None:
            return True

        failed_state = run.state
        run.enter(RestoreState.RECOVERING)
        logger.warning("Restore failed while %s; recovering %s", failed_state.value, run.root)
        try:
            if run.branch and run.branch != "HEAD":
                self._git(run.root, "checkout", "-f", run.branch)
            self._git(run.root, "reset", "--hard", run.snapshot_id)
            self._git(run.root, "clean", "-fd")
            head = self.history.get_current_snapshot_id(run.root)
        except CommandFailure:
            logger.exception("Failed to recover original state of %s", run.root)
            return False
        return head == run.snapshot_id

    # === Save / discard ===

    def save(self, root: Optional[PathLike] = None) -> str:
        """Stage and commit every uncommitted change with a generated message.

        Raises:
            NoChangesToSave: The working tree is clean
        """
        repo = self._root(root)
        with self._repository_lock(repo):
            pending = self.changes.get_uncommitted_changes(repo)
            if not pending.has_changes:
                raise NoChangesToSave()

            try:
                self._git(repo, "add", "-A")
                message = self.messages.generate(pending.files, pending.summary)
                self._git(repo, "commit", "-m", message)
            finally:
                self.clear_caches()
            return message

    def discard_changes(self, root: Optional[PathLike] = None) -> bool:
        """Throw away every uncommitted change, including untracked files."""
        repo = self._root(root)
        with self._repository_lock(repo):
            try:
                self._git(repo, "reset", "--hard", "HEAD")
                self._git(repo, "clean", "-fd")
            finally:
                self.clear_caches()
        return True

    # === Backups ===

    def create_backup(self, root: Optional[PathLike] = None, label: str = "pre-restore") -> str:
        """Create a timestamped branch at HEAD without checking it out."""
        repo = self._root(root)
        stamp = self._now().astimezone(timezone.utc).strftime(BACKUP_STAMP_FORMAT)
        base_name = f"{self.config.backup_prefix}{label}-{stamp}"

        existing = set(self._list_branches(repo, base_name + "*"))
        branch_name = base_name
        counter = 0
        while branch_name in existing:
            counter += 1
            branch_name = f"{base_name}-{counter}"

        with self._repository_lock(repo):
            self._git(repo, "branch", branch_name, "HEAD")
        logger.info("Created backup branch %s", branch_name)
        return branch_name

    def _list_branches(self, repo: Path, pattern: str) -> List[str]:
        output = self._git(repo, "branch", "--list", "--format=%(refname:short)", pattern)
        return [line.strip() for line in output.splitlines() if line.strip()]

    def list_backups(self, root: Optional[PathLike] = None) -> Dict[str, datetime]:
        """Backup branch name -> creation date.

        The date comes from the timestamp in the branch name. Branches
        without one fall back to the date of the commit they point at.
        """
        repo = self._root(root)
        ref_prefix = "refs/heads/" + self.config.backup_prefix.rstrip("/")
        output = self._git(
            repo,
            "for-each-ref",
            "--format=%(refname:short)|%(creatordate:iso-strict)",
            ref_prefix,
        )
        backups: Dict[str, datetime] = {}
        for line in output.splitlines():
            if "|" not in line:
                continue
            name, date_text = line.rsplit("|", 1)
            name = name.strip()
            created = _stamp_from_branch(name)
            if created is None:
                date_text = date_text.strip()
                if date_text.endswith("Z"):
                    date_text = date_text[:-1] + "+00:00"
                try:
                    created = datetime.fromisoformat(date_text)
                except ValueError:
                    logger.warning("Unparseable date for backup branch %s: %r", name, date_text)
                    continue
            backups[name] = created
        return backups

    def cleanup_backups(
        self, root: Optional[PathLike] = None, days_to_keep: Optional[int] = None
    ) -> List[str]:
        """Delete backup branches older than ``days_to_keep`` days.

        A branch that cannot be deleted is logged and skipped.

        Returns:
            Names of the deleted branches
        """
        repo = self._root(root)
        days = self.config.backup_retention_days if days_to_keep is None else days_to_keep
        cutoff = self._now() - timedelta(days=days)

        deleted: List[str] = []
        with self._repository_lock(repo):
            for name, created in sorted(self.list_backups(repo).items()):
                if created >= cutoff:
                    continue
                try:
                    self._git(repo, "branch", "-D", name)
                except CommandFailure as e:
                    logger.warning("Failed to delete old backup branch %s: %s", name, e)
                    continue
                deleted.append(name)
        if deleted:
            logger.info("Removed %d old backup branch(es)", len(deleted))
        return deleted

    def sweep_backups(self, root: Optional[PathLike] = None) -> List[str]:
        """Apply the configured retention to backup branches."""
        return self.cleanup_backups(root, self.config.backup_retention_days)

    def _sweep_quietly(self, repo: Path) -> None:
        try:
            self.sweep_backups(repo)
        except CommandFailure as e:
            logger.warning("Backup cleanup failed for %s: %s", repo, e)

    # === Repository creation ===

    def create_new_repository(self, workspace: Optional[PathLike] = None) -> Optional[Path]:
        """Initialize version tracking in the workspace with a first snapshot.

        Returns:
            The workspace path, or None if the host declined the setup

        Raises:
            InvalidParameters: No workspace folder is open
        """
        if workspace is None:
            if not self.locator.workspace_folders:
                raise InvalidParameters("Please open a folder first.")
            workspace = self.locator.workspace_folders[0]
        path = Path(workspace)

        if not self.hooks.confirm_setup(path):
            return None

        with self._repository_lock(path):
            try:
                self._initialize(path)
            finally:
                self.clear_caches()
        return path

    def _initialize(self, path: Path) -> None:
        self.hooks.progress(0, "Initializing...")
        self._git(path, "init")

        self.hooks.progress(50, "Setting up configuration...")
        try:
            self._git(path, "config", "user.name", self.config.default_user_name)
            self._git(path, "config", "user.email", self.config.default_user_email)
        except CommandFailure as e:
            logger.info("Could not set local git identity, using global config: %s", e)

        self.hooks.progress(80, "Creating first save point...")
        self._git(path, "add", "-A")
        try:
            self._git(path, "commit", "-m", FIRST_SAVE_MESSAGE)
        except CommandFailure:
            readme = path / "README.md"
            if readme.exists():
                raise
            # Empty folder: commit a placeholder so history is never empty.
            readme.write_text(PLACEHOLDER_README, encoding="utf-8")
            self._git(path, "add", "README.md")
            self._git(path, "commit", "-m", FIRST_SAVE_MESSAGE)

        self.hooks.progress(100, "Done!")
