"""Abstract interfaces for the GitHub integration."""

from osoba.interfaces.github import (
    GitHubClient,
    Issue,
    LabelTransition,
    PullRequest,
    PullRequestStatus,
    RateLimit,
)

__all__ = [
    "GitHubClient",
    "Issue",
    "LabelTransition",
    "PullRequest",
    "PullRequestStatus",
    "RateLimit",
]
