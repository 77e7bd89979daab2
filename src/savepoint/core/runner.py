"""Git command execution with lock-contention retries."""

import logging
import time
from pathlib import Path
from typing import Callable, Dict, NamedTuple, Optional, Sequence, Union

import git

from savepoint.exceptions import CommandFailure, LockContention

logger = logging.getLogger(__name__)

LOCK_SIGNATURE = "index.lock"


class CommandResult(NamedTuple):
    stdout: str
    stderr: str


def _clean_stderr(stderr: str) -> str:
    """Strip GitPython's ``stderr: '...'`` decoration from an error's stderr."""
    text = (stderr or "").strip()
    prefix = "stderr: '"
    if text.startswith(prefix) and text.endswith("'"):
        text = text[len(prefix) : -1]
    return text.strip()


def is_warning_only(stderr: str) -> bool:
    """True when every non-empty stderr line is a git warning or hint."""
    lines = [line.strip() for line in stderr.splitlines() if line.strip()]
    return all(line.lower().startswith(("warning:", "hint:")) for line in lines)


def git_dir_for(working_dir: Union[str, Path]) -> Path:
    """The git directory holding the index for ``working_dir``.

    Linked worktrees and submodules have a ``.git`` file pointing elsewhere;
    GitPython follows it.
    """
    try:
        with git.Repo(working_dir, search_parent_directories=True) as repo:
            return Path(repo.git_dir)
    except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
        return Path(working_dir) / ".git"


def remove_lock_file(working_dir: Union[str, Path]) -> bool:
    """Delete a stale ``index.lock`` in the git directory of ``working_dir``.

    Returns True if a lock file was removed. Failing to remove one is
    logged and never raised.
    """
    lock_file = git_dir_for(working_dir) / LOCK_SIGNATURE
    try:
        lock_file.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning("Could not remove git lock %s: %s", lock_file, e)
        return False
    logger.warning("Removed stale git lock %s", lock_file)
    return True


class CommandRunner:
    """Runs git commands in a working directory.

    Failures caused by a leftover ``index.lock`` are repaired (the lock is
    removed) and retried with linear back-off; any other failure is raised
    immediately as :class:`CommandFailure`.
    """

    def __init__(
        self,
        max_retries: int = 2,
        retry_delay_ms: int = 100,
        git_executable: str = "git",
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self.git_executable = git_executable
        self._sleep = sleep

    def run(
        self,
        args: Sequence[str],
        working_dir: Union[str, Path],
        max_retries: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
        extra_env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        """Run ``git <args>`` in ``working_dir`` and return its output.

        Args:
            args: Arguments following the git executable
            working_dir: Directory the command runs in
            max_retries: Retries allowed for lock contention
            retry_delay_ms: Base back-off; attempt ``n`` waits ``n * retry_delay_ms``
            extra_env: Variables merged over the inherited environment

        Returns:
            Captured stdout (trailing newline stripped) and stderr

        Raises:
            LockContention: The index lock persisted through every retry
            CommandFailure: Any other non-zero exit or missing git binary
        """
        retries = self.max_retries if max_retries is None else max_retries
        delay_ms = self.retry_delay_ms if retry_delay_ms is None else retry_delay_ms
        command = [self.git_executable, *args]
        runner = git.Git(str(working_dir))

        attempt = 0
        while True:
            try:
                _, stdout, stderr = runner.execute(
                    command,
                    with_extended_output=True,
                    env=extra_env,
                )
            except git.exc.GitCommandNotFound as e:
                raise CommandFailure(command, None, str(e)) from e
            except git.exc.GitCommandError as e:
                stderr_text = _clean_stderr(e.stderr)
                if LOCK_SIGNATURE not in stderr_text:
                    raise CommandFailure(command, e.status, stderr_text) from e
                if attempt >= retries:
                    raise LockContention(command, e.status, stderr_text) from e
                attempt += 1
                logger.warning(
                    "Git lock conflict (attempt %d/%d), retrying: %s",
                    attempt,
                    retries,
                    " ".join(command),
                )
                remove_lock_file(working_dir)
                self._sleep(delay_ms * attempt / 1000.0)
                continue

            if stderr and not is_warning_only(stderr):
                logger.warning("Git stderr for %s: %s", " ".join(command), stderr.strip())
            return CommandResult(stdout, stderr)

    def is_git_installed(self) -> bool:
        """Check whether the git binary can be executed."""
        try:
            self.run(["--version"], ".", max_retries=0)
        except CommandFailure:
            return False
        return True
