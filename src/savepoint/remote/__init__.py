"""Remote hosting mirrors."""

from .github import GitHubClient, GitHubRepository, GitHubUser

__all__ = ["GitHubClient", "GitHubRepository", "GitHubUser"]
