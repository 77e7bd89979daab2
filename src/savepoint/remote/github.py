"""Mirroring repositories to GitHub.

REST calls go through ``httpx``; pushes and clones shell out to git through
the command runner.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx
from pydantic import BaseModel

from savepoint.core.runner import CommandRunner
from savepoint.exceptions import CommandFailure, GitHubError, InvalidParameters

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
USER_AGENT = "savepoint"


class GitHubUser(BaseModel):
    login: str
    id: int
    name: Optional[str] = None
    email: Optional[str] = None


class GitHubRepository(BaseModel):
    name: str
    full_name: str
    description: str
    clone_url: str
    is_private: bool
    updated_at: Optional[str] = None
    language: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "GitHubRepository":
        return cls(
            name=data["name"],
            full_name=data.get("full_name", data["name"]),
            description=data.get("description") or "No description",
            clone_url=data.get("clone_url", ""),
            is_private=bool(data.get("private", False)),
            updated_at=data.get("updated_at"),
            language=data.get("language"),
        )


def is_valid_token(token: str) -> bool:
    """Personal access tokens start with ``ghp_`` or ``github_pat_``."""
    token = (token or "").strip()
    return token.startswith(("ghp_", "github_pat_"))


class GitHubClient:
    """Minimal authenticated GitHub REST client."""

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 30.0,
    ):
        if not token:
            raise InvalidParameters("GitHub token is required for GitHub operations")
        self._client = httpx.Client(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": USER_AGENT,
            },
            transport=transport,
            timeout=timeout,
        )

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, endpoint: str, **kwargs) -> Any:
        try:
            response = self._client.request(method, endpoint, **kwargs)
        except httpx.HTTPError as e:
            raise GitHubError(f"GitHub API request failed: {e}") from e

        try:
            data = response.json() if response.content else {}
        except ValueError as e:
            raise GitHubError(
                f"Failed to parse GitHub API response: {e}", response.status_code
            ) from e

        if response.is_success:
            return data
        message = data.get("message", "Unknown error") if isinstance(data, dict) else "Unknown error"
        raise GitHubError(f"GitHub API Error: {message}", response.status_code)

    def get_user(self) -> GitHubUser:
        """The account the token belongs to."""
        return GitHubUser(**self._request("GET", "/user"))

    def repository_exists(self, owner: str, name: str) -> bool:
        try:
            self._request("GET", f"/repos/{owner}/{name}")
        except GitHubError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    def create_repository(
        self, name: str, description: str = "", private: bool = False
    ) -> GitHubRepository:
        payload = {
            "name": name,
            "description": description,
            "private": private,
            "auto_init": False,
        }
        return GitHubRepository.from_api(self._request("POST", "/user/repos", json=payload))

    def list_repositories(self, limit: int = 100) -> List[GitHubRepository]:
        """The user's repositories, most recently updated first."""
        data = self._request(
            "GET", "/user/repos", params={"per_page": limit, "sort": "updated"}
        )
        return [GitHubRepository.from_api(item) for item in data]


def add_remote_and_push(
    runner: CommandRunner,
    root: PathLike,
    remote_url: str,
    branches: Sequence[str] = ("main", "master"),
    remote: str = "origin",
) -> str:
    """Point ``remote`` at ``remote_url`` and push the first branch that works.

    Returns:
        The branch that was pushed

    Raises:
        GitHubError: None of ``branches`` could be pushed
    """
    try:
        runner.run(["remote", "get-url", remote], root, max_retries=0)
    except CommandFailure:
        runner.run(["remote", "add", remote, remote_url], root)
    else:
        runner.run(["remote", "set-url", remote, remote_url], root)

    first_error: Optional[CommandFailure] = None
    for branch in branches:
        try:
            runner.run(["push", "-u", remote, branch], root, max_retries=0)
        except CommandFailure as e:
            logger.info("Push of %s failed, trying next branch: %s", branch, e)
            first_error = first_error or e
            continue
        return branch
    raise GitHubError(f"Failed to push to GitHub: {first_error}") from first_error


def clone_repository(runner: CommandRunner, clone_url: str, target: PathLike) -> Path:
    target_path = Path(target)
    target_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        runner.run(["clone", clone_url, str(target_path)], target_path.parent, max_retries=0)
    except CommandFailure as e:
        raise GitHubError(f"Failed to clone repository: {e}") from e
    return target_path


def mirror_repository(
    client: GitHubClient,
    runner: CommandRunner,
    root: PathLike,
    name: Optional[str] = None,
    description: str = "",
    private: bool = False,
    branches: Sequence[str] = ("main", "master"),
) -> str:
    """Push ``root`` to a GitHub repository, creating it when missing.

    Returns:
        The web URL of the GitHub repository
    """
    root = Path(root)
    try:
        runner.run(["rev-parse", "--verify", "HEAD"], root, max_retries=0)
    except CommandFailure as e:
        raise InvalidParameters(
            "No commits found. Please make at least one commit before saving to GitHub."
        ) from e

    user = client.get_user()
    repo_name = name or root.resolve().name
    if client.repository_exists(user.login, repo_name):
        logger.info("Repository %s already exists on GitHub", repo_name)
        clone_url = f"https://github.com/{user.login}/{repo_name}.git"
    else:
        created = client.create_repository(repo_name, description, private)
        logger.info("Created GitHub repository %s", created.full_name)
        clone_url = created.clone_url

    add_remote_and_push(runner, root, clone_url, branches)
    return f"https://github.com/{user.login}/{repo_name}"
