from reviewsync.github.client import GitHubAPI
from reviewsync.github.fixtures import FixtureGitHubAPI

__all__ = ["GitHubAPI", "FixtureGitHubAPI"]
