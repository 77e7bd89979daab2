"""Tests for the GitHub mirror."""

import json
import tempfile
from pathlib import Path

import httpx
import pytest
from git import Repo

from savepoint.core.runner import CommandRunner
from savepoint.exceptions import GitHubError, InvalidParameters
from savepoint.remote.github import (
    GitHubClient,
    add_remote_and_push,
    clone_repository,
    is_valid_token,
    mirror_repository,
)

TOKEN = "ghp_testtoken"


class FakeGitHub:
    """In-memory stand-in for the GitHub REST endpoints used by the client."""

    def __init__(self, existing=(), clone_url="https://github.com/octo/project.git"):
        self.existing = set(existing)
        self.clone_url = clone_url
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.headers.get("Authorization") != f"Bearer {TOKEN}":
            return httpx.Response(401, json={"message": "Bad credentials"})
        if path == "/user":
            return httpx.Response(200, json={"login": "octo", "id": 1, "name": "Octo Cat"})
        if path.startswith("/repos/octo/"):
            name = path.rsplit("/", 1)[-1]
            if name in self.existing:
                return httpx.Response(200, json={"name": name})
            return httpx.Response(404, json={"message": "Not Found"})
        if path == "/user/repos" and request.method == "POST":
            payload = json.loads(request.content)
            return httpx.Response(
                201,
                json={
                    "name": payload["name"],
                    "full_name": f"octo/{payload['name']}",
                    "description": payload["description"],
                    "clone_url": self.clone_url,
                    "private": payload["private"],
                },
            )
        if path == "/user/repos":
            return httpx.Response(
                200,
                json=[
                    {"name": "alpha", "full_name": "octo/alpha", "private": True, "language": "Python"},
                    {"name": "beta", "full_name": "octo/beta", "description": None},
                ],
            )
        return httpx.Response(500, json={"message": "unexpected"})


def make_client(fake, token=TOKEN):
    return GitHubClient(token, transport=httpx.MockTransport(fake))


@pytest.fixture
def temp_repo():
    """A repository with one commit on ``master``."""
    with tempfile.TemporaryDirectory() as temp_dir:
        repo_path = Path(temp_dir) / "project"
        repo_path.mkdir()
        repo = Repo.init(repo_path)
        with repo.config_writer() as config:
            config.set_value("user", "name", "Test User")
            config.set_value("user", "email", "test@example.com")
        (repo_path / "main.py").write_text("print('hello')\n")
        repo.index.add(["main.py"])
        repo.index.commit("Initial commit")
        repo.git.branch("-M", "master")
        yield repo_path


@pytest.fixture
def bare_remote():
    with tempfile.TemporaryDirectory() as temp_dir:
        remote_path = Path(temp_dir) / "remote.git"
        Repo.init(remote_path, bare=True)
        yield remote_path


@pytest.mark.parametrize(
    "token,valid",
    [("ghp_abc", True), ("github_pat_abc", True), ("  ghp_abc  ", True), ("abc", False), ("", False)],
)
def test_is_valid_token(token, valid):
    assert is_valid_token(token) is valid


def test_client_requires_token():
    with pytest.raises(InvalidParameters):
        GitHubClient("")


def test_get_user():
    with make_client(FakeGitHub()) as client:
        user = client.get_user()
    assert user.login == "octo"
    assert user.name == "Octo Cat"


def test_api_error_carries_status_code():
    with make_client(FakeGitHub(), token="ghp_wrong") as client:
        with pytest.raises(GitHubError) as exc_info:
            client.get_user()
    assert exc_info.value.status_code == 401
    assert "Bad credentials" in str(exc_info.value)


def test_repository_exists():
    with make_client(FakeGitHub(existing={"present"})) as client:
        assert client.repository_exists("octo", "present") is True
        assert client.repository_exists("octo", "absent") is False


def test_create_repository_payload():
    fake = FakeGitHub()
    with make_client(fake) as client:
        created = client.create_repository("project", "My project", private=True)

    payload = json.loads(fake.requests[-1].content)
    assert payload == {
        "name": "project",
        "description": "My project",
        "private": True,
        "auto_init": False,
    }
    assert created.full_name == "octo/project"
    assert created.is_private is True


def test_list_repositories():
    fake = FakeGitHub()
    with make_client(fake) as client:
        repos = client.list_repositories(limit=10)

    assert [r.name for r in repos] == ["alpha", "beta"]
    assert repos[0].language == "Python"
    assert repos[1].description == "No description"
    assert fake.requests[-1].url.params["per_page"] == "10"
    assert fake.requests[-1].url.params["sort"] == "updated"


def test_push_falls_back_to_next_branch(temp_repo, bare_remote):
    runner = CommandRunner()

    pushed = add_remote_and_push(runner, temp_repo, str(bare_remote), branches=("main", "master"))

    assert pushed == "master"
    remote = Repo(bare_remote)
    assert remote.heads.master.commit.hexsha == Repo(temp_repo).head.commit.hexsha


def test_push_updates_existing_remote(temp_repo, bare_remote):
    repo = Repo(temp_repo)
    repo.create_remote("origin", "https://example.invalid/old.git")

    add_remote_and_push(CommandRunner(), temp_repo, str(bare_remote), branches=("master",))

    assert repo.remotes.origin.url == str(bare_remote)


def test_push_failure_raises(temp_repo, bare_remote):
    with pytest.raises(GitHubError):
        add_remote_and_push(CommandRunner(), temp_repo, str(bare_remote), branches=("nope",))


def test_clone_repository(temp_repo, bare_remote):
    runner = CommandRunner()
    add_remote_and_push(runner, temp_repo, str(bare_remote), branches=("master",))

    with tempfile.TemporaryDirectory() as temp_dir:
        target = Path(temp_dir) / "nested" / "copy"
        path = clone_repository(runner, str(bare_remote), target)

        assert path == target
        assert (target / "main.py").read_text() == "print('hello')\n"


def test_clone_failure_raises():
    with tempfile.TemporaryDirectory() as temp_dir:
        with pytest.raises(GitHubError):
            clone_repository(CommandRunner(), str(Path(temp_dir) / "missing.git"), Path(temp_dir) / "copy")


def test_mirror_creates_and_pushes(temp_repo, bare_remote):
    fake = FakeGitHub(clone_url=str(bare_remote))
    with make_client(fake) as client:
        url = mirror_repository(client, CommandRunner(), temp_repo, description="demo")

    assert url == "https://github.com/octo/project"
    assert [r.method for r in fake.requests] == ["GET", "GET", "POST"]
    assert Repo(bare_remote).heads.master.commit.hexsha == Repo(temp_repo).head.commit.hexsha


def test_mirror_requires_a_commit():
    with tempfile.TemporaryDirectory() as temp_dir:
        Repo.init(temp_dir)
        with make_client(FakeGitHub()) as client:
            with pytest.raises(InvalidParameters):
                mirror_repository(client, CommandRunner(), temp_dir)
