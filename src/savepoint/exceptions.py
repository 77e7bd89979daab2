"""Exceptions raised by the savepoint engine."""

from typing import Optional, Sequence


class SavepointError(Exception):
    """Base class for every error the engine reports."""


class NoRepositoryFound(SavepointError):
    """No git repository could be located for the workspace."""


class CommandFailure(SavepointError):
    """A git command exited unsuccessfully."""

    def __init__(
        self,
        command: Sequence[str],
        status: Optional[int] = None,
        stderr: str = "",
    ):
        self.command = list(command)
        self.status = status
        self.stderr = stderr
        text = f"git command failed ({' '.join(self.command)})"
        if status is not None:
            text += f" with exit status {status}"
        if stderr:
            text += f": {stderr}"
        super().__init__(text)


class LockContention(CommandFailure):
    """The index lock stayed in place after every retry."""


class NoChangesToSave(SavepointError):
    """There is nothing uncommitted to record."""

    def __init__(self, message: str = "No uncommitted changes to save."):
        super().__init__(message)


class RestoreFailed(SavepointError):
    """A restore did not complete; ``recovered`` tells whether rollback worked."""

    def __init__(self, message: str, recovered: bool = False):
        self.recovered = recovered
        super().__init__(message)


class InvalidParameters(SavepointError):
    """A caller passed arguments the engine cannot act on."""


class GitHubError(SavepointError):
    """The GitHub API rejected a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
